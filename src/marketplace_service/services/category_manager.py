"""Task categories: public reads, admin-only writes."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from marketplace_service.core.exceptions import ForbiddenError, NotFoundError, ServiceError
from marketplace_service.logging import get_logger
from marketplace_service.services.marketplace_store import DuplicateCategoryError

if TYPE_CHECKING:
    from marketplace_service.services.marketplace_store import MarketplaceStore
    from marketplace_service.services.token_validator import Actor

MAX_NAME_LENGTH = 50
MAX_ATTRIBUTE_LENGTH = 50

_CATEGORY_FIELDS = frozenset({"name", "icon", "color"})


def _invalid(message: str) -> ServiceError:
    return ServiceError("INVALID_PAYLOAD", message, 400, {})


def _now() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def category_to_response(row: dict[str, Any]) -> dict[str, Any]:
    """Convert a category row to its response dict."""
    return {
        "category_id": row["category_id"],
        "name": row["name"],
        "icon": row["icon"],
        "color": row["color"],
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
    }


class CategoryManager:
    """
    Owns every write to categories.

    Anyone may list or read categories. Creating, renaming and deleting
    them is reserved to admins. Names are unique; deleting a category
    leaves its tasks uncategorised.
    """

    def __init__(self, store: MarketplaceStore) -> None:
        self._store = store
        self._logger = get_logger(__name__)

    def _require_admin(self, actor: Actor, action: str) -> None:
        if not actor.is_admin:
            raise ForbiddenError(f"Only admins can {action} categories")

    def _validate(self, data: dict[str, Any], *, partial: bool) -> dict[str, Any]:
        unknown = sorted(set(data) - _CATEGORY_FIELDS)
        if unknown:
            raise _invalid(f"Unknown field(s): {', '.join(unknown)}")
        if partial and len(data) == 0:
            raise _invalid("At least one field must be provided")

        fields: dict[str, Any] = {}
        if "name" in data or not partial:
            name = data.get("name")
            if not isinstance(name, str) or len(name.strip()) == 0:
                raise _invalid("name must be a non-empty string")
            name = name.strip()
            if len(name) > MAX_NAME_LENGTH:
                raise _invalid(f"name must be at most {MAX_NAME_LENGTH} characters")
            fields["name"] = name

        for attribute in ("icon", "color"):
            if attribute not in data:
                continue
            value = data[attribute]
            if value is not None:
                if not isinstance(value, str):
                    raise _invalid(f"{attribute} must be a string or null")
                if len(value) > MAX_ATTRIBUTE_LENGTH:
                    raise _invalid(
                        f"{attribute} must be at most {MAX_ATTRIBUTE_LENGTH} characters"
                    )
            fields[attribute] = value

        return fields

    def _load(self, category_id: str) -> dict[str, Any]:
        category = self._store.get_category(category_id)
        if category is None:
            raise NotFoundError("CATEGORY_NOT_FOUND", "Category not found")
        return category

    def list_categories(self) -> list[dict[str, Any]]:
        """List every category, alphabetically."""
        return [category_to_response(row) for row in self._store.list_categories()]

    def get_category(self, category_id: str) -> dict[str, Any]:
        """Fetch one category or raise CATEGORY_NOT_FOUND."""
        return category_to_response(self._load(category_id))

    def create(self, actor: Actor, data: dict[str, Any]) -> dict[str, Any]:
        """
        Create a category.

        Error precedence:
        1. FORBIDDEN: caller is not an admin
        2. INVALID_PAYLOAD: malformed fields
        3. CATEGORY_EXISTS (409): the name is taken
        """
        self._require_admin(actor, "create")
        fields = self._validate(data, partial=False)
        now = _now()
        category = {
            "category_id": f"cat-{uuid.uuid4()}",
            "name": fields["name"],
            "icon": fields.get("icon"),
            "color": fields.get("color"),
            "created_at": now,
            "updated_at": now,
        }

        try:
            self._store.insert_category(category)
        except DuplicateCategoryError as exc:
            raise ServiceError(
                "CATEGORY_EXISTS",
                "Category already exists",
                409,
                {"name": fields["name"]},
            ) from exc

        self._logger.info(
            "Category created",
            extra={"category_id": category["category_id"], "actor_id": actor.user_id},
        )
        return category_to_response(category)

    def update(self, category_id: str, actor: Actor, data: dict[str, Any]) -> dict[str, Any]:
        """
        Rename a category or change its icon or color.

        Keeping the current name is not a conflict; taking another
        category's name is CATEGORY_EXISTS (409).
        """
        self._require_admin(actor, "update")
        fields = self._validate(data, partial=True)

        with self._store.transaction():
            self._load(category_id)
            try:
                self._store.update_category(category_id, {**fields, "updated_at": _now()})
            except DuplicateCategoryError as exc:
                raise ServiceError(
                    "CATEGORY_EXISTS",
                    "Category name already taken",
                    409,
                    {"name": fields.get("name")},
                ) from exc

        self._logger.info(
            "Category updated",
            extra={"category_id": category_id, "fields": sorted(fields)},
        )
        return self.get_category(category_id)

    def delete(self, category_id: str, actor: Actor) -> None:
        """Delete a category. Tasks filed under it keep no category."""
        self._require_admin(actor, "delete")
        if self._store.delete_category(category_id) == 0:
            raise NotFoundError("CATEGORY_NOT_FOUND", "Category not found")
        self._logger.info(
            "Category deleted",
            extra={"category_id": category_id, "actor_id": actor.user_id},
        )
