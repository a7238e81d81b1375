"""
Pagination helpers for list endpoints.

Queries are paginated in SQL with limit/offset and a count subquery.
"""

from math import ceil
from typing import Generic, List, Optional, TypeVar

from fastapi import Query
from pydantic import BaseModel, Field
from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config.config import settings


T = TypeVar("T")


class PaginationParams(BaseModel):
    page: int = Field(default=1, ge=1, description="Page number (starts at 1)")
    page_size: int = Field(default=10, ge=1, le=100, description="Items per page")

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.page_size

    @property
    def limit(self) -> int:
        return self.page_size


class PageInfo(BaseModel):
    total_items: int
    total_pages: int
    current_page: int
    page_size: int
    has_next: bool
    has_previous: bool
    next_page: Optional[int] = None
    previous_page: Optional[int] = None


class PaginatedResponse(BaseModel, Generic[T]):
    """Generic paginated response wrapper."""

    items: List[T]
    page_info: PageInfo

    model_config = {"from_attributes": True}


class Paginator:
    """Utility class for handling pagination in SQLAlchemy queries."""

    @staticmethod
    async def paginate(
        db: AsyncSession,
        query: Select,
        params: PaginationParams,
        schema: Optional[type[BaseModel]] = None,
    ) -> PaginatedResponse:
        """
        Paginate a SQLAlchemy query.

        Args:
            db: Database session
            query: select() without limit/offset; its ORDER BY is kept
            params: Pagination parameters
            schema: Optional Pydantic schema to validate items

        Returns:
            PaginatedResponse: Page of items with metadata
        """
        count_query = select(func.count()).select_from(query.order_by(None).subquery())
        total_items = (await db.execute(count_query)).scalar() or 0

        result = await db.execute(query.offset(params.skip).limit(params.limit))
        items = list(result.scalars().unique().all())

        if schema:
            items = [schema.model_validate(item, from_attributes=True) for item in items]

        return PaginatedResponse(
            items=items,
            page_info=Paginator.create_page_info(
                total_items, params.page, params.page_size
            ),
        )

    @staticmethod
    def create_page_info(total_items: int, page: int, page_size: int) -> PageInfo:
        total_pages = ceil(total_items / page_size) if total_items > 0 else 0
        has_next = page < total_pages
        has_previous = page > 1

        return PageInfo(
            total_items=total_items,
            total_pages=total_pages,
            current_page=page,
            page_size=page_size,
            has_next=has_next,
            has_previous=has_previous,
            next_page=page + 1 if has_next else None,
            previous_page=page - 1 if has_previous else None,
        )


def get_pagination_params(
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=100),
) -> PaginationParams:
    """
    Dependency for pagination parameters.

    Usage in route:
        @router.get("/payments")
        async def list_payments(
            pagination: PaginationParams = Depends(get_pagination_params)
        ):
            ...
    """
    return PaginationParams(page=page, page_size=page_size)
