from __future__ import annotations

import logging
from typing import Any, Dict, List, Tuple

from ..errors import CategoryMissing, Conflict
from ..models import CategoryEntity, CategoryWithCounts
from ..repositories import CategoryRepository
from ..schemas import CategoryCreate, CategoryUpdate

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
class CategoryService:
    """Owner-scoped category CRUD with per-owner name uniqueness."""

    def __init__(self, categories: CategoryRepository) -> None:
        self._categories = categories

    def create(self, owner_id: int, payload: CategoryCreate) -> CategoryEntity:
        if self._categories.name_taken(owner_id, payload.name):
            raise Conflict("category with this name already exists")
        return self._categories.create(
            owner_id=owner_id,
            name=payload.name,
            description=payload.description,
            color=payload.color,
        )

    def get(self, owner_id: int, category_id: int) -> CategoryEntity:
        category = self._categories.get(category_id, owner_id)
        if category is None:
            raise CategoryMissing()
        return category

    def list(self, owner_id: int, page: int, page_size: int) -> Tuple[List[CategoryWithCounts], int]:
        return self._categories.list(owner_id, page, page_size)

    def update(self, owner_id: int, category_id: int, payload: CategoryUpdate) -> CategoryEntity:
        """
        Apply the fields present in the payload.
        The name is re-checked for uniqueness (excluding this category) only when it changes.
        """
        current = self.get(owner_id, category_id)

        fields = payload.model_fields_set
        changes: Dict[str, Any] = {}
        if "name" in fields and payload.name is not None and payload.name != current["name"]:
            if self._categories.name_taken(owner_id, payload.name, exclude_id=category_id):
                raise Conflict("category with this name already exists")
            changes["name"] = payload.name
        if "description" in fields:
            changes["description"] = payload.description or ""
        if "color" in fields:
            changes["color"] = payload.color

        if not changes:
            return current
        updated = self._categories.update(category_id, owner_id, changes)
        if updated is None:
            raise CategoryMissing()
        return updated

    def delete(self, owner_id: int, category_id: int) -> None:
        if not self._categories.delete(category_id, owner_id):
            raise CategoryMissing()
        logger.info("Deleted category id=%s owner=%s", category_id, owner_id)
