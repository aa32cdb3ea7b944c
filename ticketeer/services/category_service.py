"""
Category service: the catalogue of slugs events can be tagged with.
"""

import logging
from typing import Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..cache import CacheInvalidator, CacheKeyBuilder, CacheTTL, RedisCache
from ..models.category import Category
from ..models.event import EventCategory
from ..schemas.category import (
    CategoryCreate,
    CategoryListResponse,
    CategoryResponse,
    CategoryUpdate,
)
from ..utils.exceptions import (
    CategoryExistsError,
    CategoryInUseError,
    CategoryNotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)


class CategoryService:
    """Service class for category management and lookups."""

    def __init__(self, db: AsyncSession, cache: Optional[RedisCache] = None):
        self.db = db
        self.cache = cache
        self.invalidator = CacheInvalidator(cache) if cache is not None else None

    async def list_categories(self) -> CategoryListResponse:
        """All categories sorted by name, served from cache when possible."""
        cache_key = CacheKeyBuilder.category_list()
        if self.cache is not None:
            cached = await self.cache.get(cache_key)
            if cached is not None:
                return CategoryListResponse.model_validate(cached)

        result = await self.db.execute(select(Category).order_by(func.lower(Category.name), Category.slug))
        categories = [CategoryResponse.model_validate(row) for row in result.scalars().all()]
        response = CategoryListResponse(categories=categories, count=len(categories))

        if self.cache is not None:
            await self.cache.set(cache_key, response.model_dump(mode="json"), CacheTTL.CATEGORY)
        return response

    async def get_category(self, slug: str) -> Category:
        category = await self.db.scalar(
            select(Category)
            .where(Category.slug == slug)
            .execution_options(populate_existing=True)
        )
        if category is None:
            raise CategoryNotFoundError(slug)
        return category

    async def get_category_response(self, slug: str) -> CategoryResponse:
        cache_key = CacheKeyBuilder.category_detail(slug)
        if self.cache is not None:
            cached = await self.cache.get(cache_key)
            if cached is not None:
                return CategoryResponse.model_validate(cached)

        response = CategoryResponse.model_validate(await self.get_category(slug))

        if self.cache is not None:
            await self.cache.set(cache_key, response.model_dump(mode="json"), CacheTTL.CATEGORY)
        return response

    async def create_category(self, data: CategoryCreate) -> Category:
        """
        Create a category.

        Raises:
            CategoryExistsError: If the slug is taken
        """
        existing = await self.db.scalar(select(Category.id).where(Category.slug == data.slug))
        if existing is not None:
            raise CategoryExistsError(data.slug)

        category = Category(slug=data.slug, name=data.name, description=data.description)
        self.db.add(category)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise CategoryExistsError(data.slug)

        await self._invalidate(category.slug)
        logger.info("Created category %s", category.slug)
        return category

    async def update_category(self, slug: str, data: CategoryUpdate) -> Category:
        category = await self.get_category(slug)
        for field, value in data.model_dump(exclude_unset=True).items():
            if field == "name" and value is None:
                continue
            setattr(category, field, value)

        await self.db.commit()
        await self._invalidate(slug)
        return category

    async def delete_category(self, slug: str) -> None:
        """
        Delete a category no event is tagged with.

        Raises:
            CategoryNotFoundError: If the slug is unknown
            CategoryInUseError: If events still carry the category
        """
        category = await self.get_category(slug)

        in_use = await self.db.scalar(
            select(func.count(EventCategory.id)).where(EventCategory.category_id == slug)
        ) or 0
        if in_use:
            raise CategoryInUseError(slug, in_use)

        await self.db.delete(category)
        await self.db.commit()
        await self._invalidate(slug)
        logger.info("Deleted category %s", slug)

    async def require_known(self, slugs: Iterable[str]) -> List[str]:
        """
        Check that every slug names an existing category.

        Returns:
            The unique slugs, sorted

        Raises:
            ValidationError: Naming the unknown slugs
        """
        wanted = sorted(set(slugs))
        if not wanted:
            return wanted

        result = await self.db.execute(select(Category.slug).where(Category.slug.in_(wanted)))
        unknown = sorted(set(wanted) - set(result.scalars().all()))
        if unknown:
            raise ValidationError(
                f"Unknown categories: {', '.join(unknown)}",
                field_errors={"category_ids": [f"unknown category: {slug}" for slug in unknown]}
            )
        return wanted

    async def _invalidate(self, slug: str) -> None:
        if self.invalidator is not None:
            await self.invalidator.invalidate_category(slug)
