"""
Task Backend package.

Build an application with ``task_api.main.create_app``; ``task_api.main.app``
is a ready-made instance configured from the environment.
"""
