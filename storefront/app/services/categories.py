# storefront/app/services/categories.py
"""
Category service: CRUD, tree moves and the after-save step that keeps the
hierarchy acyclic and the discount flag current.
"""
from typing import Any, Dict, Iterable, List, Optional, Set

from sqlalchemy import select, update as sa_update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.app.core.constants import BATCH_CHUNK_SIZE
from storefront.app.core.exceptions import ServiceError
from storefront.app.core.logging import get_logger
from storefront.app.core.metrics import category_hierarchy_repairs_total
from storefront.app.models.category import Category
from storefront.app.models.discount import DiscountAppliedToCategory

logger = get_logger(__name__)

MOVE_POSITIONS = ("over", "before", "after")
UPDATABLE_FIELDS = ("name", "description", "parent_category_id", "display_order", "published")


class CategoryServiceError(ServiceError):
    pass


class CategoryNotFoundError(CategoryServiceError):
    def __init__(self, category_id: int):
        super().__init__(f"Category {category_id} not found", 404)


class InvalidMovePositionError(CategoryServiceError):
    def __init__(self, position: str):
        super().__init__(f"Invalid position '{position}'. Allowed: {', '.join(MOVE_POSITIONS)}", 400)


class InvalidCategoryFieldError(CategoryServiceError):
    def __init__(self, field: str):
        super().__init__(f"Field '{field}' cannot be updated", 400)


def chunked(items: List[Any], size: int = BATCH_CHUNK_SIZE) -> Iterable[List[Any]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class CategoryService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_category(self, category_id: int) -> Category:
        category = await self.session.get(Category, category_id)
        if category is None or category.deleted:
            raise CategoryNotFoundError(category_id)
        return category

    # ------------------------------------------------------------------
    # After-save step
    # ------------------------------------------------------------------

    async def refresh_has_discounts_applied(self, categories: List[Category]) -> None:
        """Set `has_discounts_applied` from the discount mappings, in chunks."""
        for chunk in chunked(categories):
            ids = [c.id for c in chunk]
            result = await self.session.execute(
                select(DiscountAppliedToCategory.category_id)
                .where(DiscountAppliedToCategory.category_id.in_(ids))
                .distinct()
            )
            applied_ids = set(result.scalars().all())
            for category in chunk:
                category.has_discounts_applied = category.id in applied_ids
        await self.session.flush()

    async def is_valid_category_hierarchy(self, category_id: int, parent_category_id: Optional[int]) -> bool:
        """False when walking up from `parent_category_id` reaches `category_id`."""
        visited: Set[int] = set()
        parent_id = parent_category_id
        while parent_id:
            if parent_id == category_id:
                return False
            if parent_id in visited:
                # Loop above us that does not pass through category_id
                return False
            visited.add(parent_id)
            result = await self.session.execute(
                select(Category.parent_category_id).where(Category.id == parent_id)
            )
            row = result.first()
            if row is None:
                break
            parent_id = row[0]
        return True

    async def after_save(self, saved: List[Category], modified: Optional[List[Category]] = None) -> List[int]:
        """
        Run after categories were inserted or updated.

        Returns the ids of modified categories that were moved back to root
        because their parent chain looped.
        """
        await self.refresh_has_discounts_applied(saved)

        invalid_ids = []
        for category in modified or []:
            if not await self.is_valid_category_hierarchy(category.id, category.parent_category_id):
                invalid_ids.append(category.id)

        if invalid_ids:
            await self.session.execute(
                sa_update(Category)
                .where(Category.id.in_(invalid_ids))
                .values(parent_category_id=None)
                .execution_options(synchronize_session="fetch")
            )
            category_hierarchy_repairs_total.inc(len(invalid_ids))
            logger.warning("Invalid category hierarchy repaired", category_ids=invalid_ids)
        await self.session.flush()
        return invalid_ids

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    async def _ensure_parent(self, parent_category_id: Optional[int]) -> None:
        if parent_category_id is not None:
            await self.get_category(parent_category_id)

    async def create_category(
        self,
        name: str,
        parent_category_id: Optional[int] = None,
        display_order: int = 0,
        published: bool = True,
        description: Optional[str] = None,
    ) -> Category:
        await self._ensure_parent(parent_category_id)
        category = Category(
            name=name,
            parent_category_id=parent_category_id,
            display_order=display_order,
            published=published,
            description=description,
        )
        self.session.add(category)
        await self.session.flush()
        await self.after_save([category])
        return category

    async def update_category(self, category_id: int, **fields) -> Category:
        category = await self.get_category(category_id)
        for key in fields:
            if key not in UPDATABLE_FIELDS:
                raise InvalidCategoryFieldError(key)
        if fields.get("parent_category_id") is not None:
            await self._ensure_parent(fields["parent_category_id"])

        for key, value in fields.items():
            setattr(category, key, value)
        await self.session.flush()
        await self.after_save([category], modified=[category])
        await self.session.refresh(category)
        return category

    async def delete_category(self, category_id: int) -> None:
        """Soft-delete a category; its children move up to its parent."""
        category = await self.get_category(category_id)
        result = await self.session.execute(
            select(Category).where(Category.parent_category_id == category_id)
        )
        children = list(result.scalars().all())
        for child in children:
            child.parent_category_id = category.parent_category_id
        category.deleted = True
        await self.session.flush()
        if children:
            await self.after_save(children, modified=children)
        logger.info("Category deleted", category_id=category_id, reparented=len(children))

    # ------------------------------------------------------------------
    # Tree
    # ------------------------------------------------------------------

    async def move_category(self, category_id: int, target_id: int, position: str) -> Category:
        """
        Drop a category onto another one in the admin tree.

        "over" makes it the last child of the target; "before"/"after" make it
        a sibling placed right before or after the target.
        """
        if position not in MOVE_POSITIONS:
            raise InvalidMovePositionError(position)
        category = await self.get_category(category_id)
        target = await self.get_category(target_id)

        if position == "over":
            category.parent_category_id = target.id
        else:
            category.parent_category_id = target.parent_category_id

        query = select(Category).where(Category.id != category.id, Category.deleted.is_(False))
        if category.parent_category_id is None:
            query = query.where(Category.parent_category_id.is_(None))
        else:
            query = query.where(Category.parent_category_id == category.parent_category_id)
        result = await self.session.execute(query.order_by(Category.display_order, Category.id))
        siblings = list(result.scalars().all())

        display_order = 0
        for sibling in siblings:
            sibling.display_order = display_order
            display_order += 10

        if position == "before":
            category.display_order = target.display_order - 5
        elif position == "after":
            category.display_order = target.display_order + 5
        else:
            category.display_order = display_order

        await self.session.flush()
        await self.after_save([category], modified=[category])
        await self.session.refresh(category)
        return category

    async def get_category_path(self, category_id: int, separator: str = " » ") -> str:
        """Breadcrumb from the root down to the category."""
        category = await self.get_category(category_id)
        names = [category.name]
        visited = {category.id}
        parent_id = category.parent_category_id
        while parent_id and parent_id not in visited:
            visited.add(parent_id)
            parent = await self.session.get(Category, parent_id)
            if parent is None or parent.deleted:
                break
            names.append(parent.name)
            parent_id = parent.parent_category_id
        return separator.join(reversed(names))

    async def get_category_tree(self, root_id: Optional[int] = None, include_hidden: bool = False) -> List[Dict[str, Any]]:
        """Nested category nodes ordered by display order. Dangling parents count as root."""
        query = select(Category).where(Category.deleted.is_(False))
        if not include_hidden:
            query = query.where(Category.published.is_(True))
        result = await self.session.execute(query.order_by(Category.display_order, Category.id))
        categories = list(result.scalars().all())
        known_ids = {c.id for c in categories}

        children: Dict[Optional[int], List[Category]] = {}
        for category in categories:
            parent_id = category.parent_category_id if category.parent_category_id in known_ids else None
            children.setdefault(parent_id, []).append(category)

        def build(parent_id: Optional[int], seen: Set[int]) -> List[Dict[str, Any]]:
            nodes = []
            for category in children.get(parent_id, []):
                if category.id in seen:
                    continue
                nodes.append({
                    "id": category.id,
                    "name": category.name,
                    "display_order": category.display_order,
                    "published": category.published,
                    "children": build(category.id, seen | {category.id}),
                })
            return nodes

        if root_id is not None:
            root = await self.get_category(root_id)
            return build(root.id, {root.id})
        return build(None, set())
