"""
Category API endpoints. Reads are public; writes are for admins.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Path, Response, status

from ..schemas.category import (
    SLUG_PATTERN,
    CategoryCreate,
    CategoryListResponse,
    CategoryResponse,
    CategoryUpdate,
)
from ..schemas.common import error_responses
from ..services.category_service import CategoryService
from ..utils.auth import UserRole
from ..utils.dependencies import get_category_service, require_roles

router = APIRouter(prefix="/categories", tags=["categories"], responses=error_responses(400, 503))

require_admin = require_roles(UserRole.ADMIN)

Slug = Annotated[str, Path(pattern=SLUG_PATTERN, description="Category slug")]


@router.get("", response_model=CategoryListResponse)
async def list_categories(category_service: CategoryService = Depends(get_category_service)):
    """All categories, alphabetically by name."""
    return await category_service.list_categories()


@router.post("", response_model=CategoryResponse, status_code=status.HTTP_201_CREATED,
             responses=error_responses(401, 403, 409))
async def create_category(
    data: CategoryCreate,
    _=Depends(require_admin),
    category_service: CategoryService = Depends(get_category_service)
):
    return await category_service.create_category(data)


@router.get("/{slug}", response_model=CategoryResponse, responses=error_responses(404))
async def get_category(
    slug: Slug,
    category_service: CategoryService = Depends(get_category_service)
):
    return await category_service.get_category_response(slug)


@router.put("/{slug}", response_model=CategoryResponse, responses=error_responses(401, 403, 404))
async def update_category(
    data: CategoryUpdate,
    slug: Slug,
    _=Depends(require_admin),
    category_service: CategoryService = Depends(get_category_service)
):
    """Rename a category or change its description. The slug is fixed."""
    return await category_service.update_category(slug, data)


@router.delete("/{slug}", status_code=status.HTTP_204_NO_CONTENT, responses=error_responses(401, 403, 404, 409))
async def delete_category(
    slug: Slug,
    _=Depends(require_admin),
    category_service: CategoryService = Depends(get_category_service)
):
    """Delete a category. Refused while any event is tagged with it."""
    await category_service.delete_category(slug)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
