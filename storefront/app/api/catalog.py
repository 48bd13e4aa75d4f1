"""
Catalog API: category CRUD and the category tree.
"""
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.app.api.deps import get_cache, get_session
from storefront.app.core.logging import get_logger
from storefront.app.schemas import (
    CategoryCreate,
    CategoryMove,
    CategoryPathResponse,
    CategoryResponse,
    CategoryTreeNode,
    CategoryUpdate,
)
from storefront.app.services.cache import CacheService
from storefront.app.services.categories import CategoryService, CategoryServiceError

router = APIRouter()
logger = get_logger(__name__)


def _handle_service_error(e: CategoryServiceError):
    raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/categories", response_model=CategoryResponse, status_code=201)
async def create_category(
    data: CategoryCreate,
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
):
    service = CategoryService(session)
    try:
        category = await service.create_category(**data.model_dump())
        await session.commit()
    except CategoryServiceError as e:
        await session.rollback()
        _handle_service_error(e)
    await cache.invalidate_category_tree()
    logger.info("Category created", category_id=category.id, parent_category_id=category.parent_category_id)
    return category


@router.put("/categories/{category_id}", response_model=CategoryResponse)
async def update_category(
    category_id: int,
    data: CategoryUpdate,
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
):
    service = CategoryService(session)
    try:
        category = await service.update_category(category_id, **data.model_dump(exclude_unset=True))
        await session.commit()
    except CategoryServiceError as e:
        await session.rollback()
        _handle_service_error(e)
    await cache.invalidate_category_tree()
    return category


@router.delete("/categories/{category_id}", status_code=204)
async def delete_category(
    category_id: int,
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
):
    service = CategoryService(session)
    try:
        await service.delete_category(category_id)
        await session.commit()
    except CategoryServiceError as e:
        await session.rollback()
        _handle_service_error(e)
    await cache.invalidate_category_tree()


@router.post("/categories/{category_id}/move", response_model=CategoryResponse)
async def move_category(
    category_id: int,
    data: CategoryMove,
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
):
    """Tree drag & drop: position is "over", "before" or "after" the target."""
    service = CategoryService(session)
    try:
        category = await service.move_category(category_id, data.target_id, data.position)
        await session.commit()
    except CategoryServiceError as e:
        await session.rollback()
        _handle_service_error(e)
    await cache.invalidate_category_tree()
    return category


@router.get("/categories/tree", response_model=List[CategoryTreeNode])
async def get_category_tree(
    include_hidden: bool = False,
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
):
    cached = await cache.get_category_tree(include_hidden)
    if cached:
        return cached

    tree = await CategoryService(session).get_category_tree(include_hidden=include_hidden)
    await cache.set_category_tree(include_hidden, tree)
    return tree


@router.get("/categories/{category_id}/path", response_model=CategoryPathResponse)
async def get_category_path(
    category_id: int,
    separator: str = " » ",
    session: AsyncSession = Depends(get_session),
):
    try:
        path = await CategoryService(session).get_category_path(category_id, separator)
    except CategoryServiceError as e:
        _handle_service_error(e)
    return CategoryPathResponse(category_id=category_id, path=path)
