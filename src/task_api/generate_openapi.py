"""
Utility script to generate and write the OpenAPI schema for the FastAPI app.

This script builds the FastAPI application and serializes its OpenAPI schema
so that API clients and documentation tools can consume a stable document
without running the server.

Usage:
    python -m task_api.generate_openapi [output_path]

Notes:
- The script ensures every tag in ``openapi_tags`` is present in the tags metadata.
- The default output path is interfaces/openapi.json in the current directory.
"""
from __future__ import annotations

import json
import logging
import os
import sys
from typing import Any, Dict, List, Optional

from .main import create_app, openapi_tags
from .settings import Settings

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT = os.path.join("interfaces", "openapi.json")


def _ensure_tags(schema: Dict[str, Any]) -> None:
    """
    Ensure the OpenAPI schema contains the expected tags metadata. This does
    not override existing tag definitions unless missing.
    """
    existing_tags: List[Dict[str, Any]] = schema.get("tags", []) or []
    existing_names = {t.get("name") for t in existing_tags if isinstance(t, dict)}
    for tag in openapi_tags:
        if tag.get("name") not in existing_names:
            existing_tags.append(tag)
    if existing_tags:
        schema["tags"] = existing_tags


def build_schema() -> Dict[str, Any]:
    # A throwaway in-memory app; the schema does not depend on storage or secrets.
    app = create_app(Settings())
    schema = app.openapi()
    _ensure_tags(schema)
    return schema


# PUBLIC_INTERFACE
def generate_openapi(path: Optional[str] = None) -> str:
    """Write the OpenAPI schema to path (default interfaces/openapi.json) and return the path."""
    out_path = path or DEFAULT_OUTPUT
    directory = os.path.dirname(out_path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    with open(out_path, "w", encoding="utf-8") as f:
        json.dump(build_schema(), f, indent=2, ensure_ascii=False)
    logger.info("Wrote OpenAPI schema to %s", out_path)
    return out_path


def main() -> None:
    out_path = generate_openapi(sys.argv[1] if len(sys.argv) > 1 else None)
    print(f"Wrote OpenAPI schema to: {out_path}")


if __name__ == "__main__":
    main()
