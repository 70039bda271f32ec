"""
Catalog pipeline

The whole product list is fetched once; filtering, sorting and pagination
happen client-side over that list.
"""

import math
from enum import Enum
from typing import Callable, Dict, List, Optional

import structlog
from pydantic import BaseModel, Field, ValidationError

from .api import StorefrontAPI
from .errors import ApiError
from .models import Product
from .notifications import Notifier

logger = structlog.get_logger(__name__)

PER_PAGE = 12


class SortKey(str, Enum):
    FEATURED = "featured"
    PRICE_LOW = "price-low"
    PRICE_HIGH = "price-high"
    RATING = "rating"
    NAME = "name"
    NEWEST = "newest"


class CatalogFilter(BaseModel):
    category: str = "All"
    search: str = ""
    price_min: float = Field(0, ge=0)
    price_max: float = Field(5000, ge=0)
    min_rating: float = Field(0, ge=0, le=5)
    only_reviewed: bool = False
    sort: SortKey = SortKey.FEATURED


def matches(product: Product, criteria: CatalogFilter) -> bool:
    if criteria.category != "All" and product.category != criteria.category:
        return False
    term = criteria.search.strip().lower()
    if term and term not in product.name.lower() and term not in (product.description or "").lower():
        return False
    if not criteria.price_min <= product.price <= criteria.price_max:
        return False
    if criteria.min_rating > 0 and (product.ratings or 0) < criteria.min_rating:
        return False
    if criteria.only_reviewed and (product.num_of_reviews or 0) <= 0:
        return False
    return True


def _created(product: Product) -> float:
    return product.created_at.timestamp() if product.created_at else 0.0


_SORTS: Dict[SortKey, Callable[[List[Product]], List[Product]]] = {
    SortKey.PRICE_LOW: lambda items: sorted(items, key=lambda p: p.price),
    SortKey.PRICE_HIGH: lambda items: sorted(items, key=lambda p: p.price, reverse=True),
    SortKey.RATING: lambda items: sorted(items, key=lambda p: p.ratings or 0, reverse=True),
    SortKey.NAME: lambda items: sorted(items, key=lambda p: p.name.casefold()),
    SortKey.NEWEST: lambda items: sorted(items, key=_created, reverse=True),
    SortKey.FEATURED: lambda items: sorted(items, key=lambda p: not p.featured),
}


def sort_products(products: List[Product], sort: SortKey) -> List[Product]:
    return _SORTS[SortKey(sort)](list(products))


def apply_filters(products: List[Product], criteria: CatalogFilter) -> List[Product]:
    return sort_products([p for p in products if matches(p, criteria)], criteria.sort)


def page_count(total: int, per_page: int = PER_PAGE) -> int:
    return math.ceil(total / per_page) if total else 0


def paginate(items: List[Product], page: int, per_page: int = PER_PAGE) -> List[Product]:
    if page < 1:
        return []
    start = (page - 1) * per_page
    return items[start:start + per_page]


class CatalogView:
    def __init__(self, api: StorefrontAPI, notifier: Notifier, per_page: int = PER_PAGE):
        self.api = api
        self.notifier = notifier
        self.per_page = per_page
        self.products: List[Product] = []
        self.featured: List[Product] = []
        self.filter = CatalogFilter()
        self.page = 1
        self.loading = False
        self.error: Optional[str] = None

    async def load(self) -> None:
        self.loading = True
        self.error = None
        try:
            self.products = await self.api.list_products()
        except ApiError as exc:
            self.error = exc.message
            self.notifier.error("Failed to load products")
        finally:
            self.loading = False

    async def load_featured(self) -> None:
        try:
            self.featured = await self.api.featured_products()
        except ApiError as exc:
            logger.info("catalog.featured_failed", status=exc.status)
            self.featured = [p for p in self.products if p.featured]

    def set_filter(self, **changes) -> CatalogFilter:
        self.filter = CatalogFilter.model_validate({**self.filter.model_dump(), **changes})
        self.page = 1
        return self.filter

    def reset_filters(self) -> None:
        self.filter = CatalogFilter()
        self.page = 1

    @property
    def results(self) -> List[Product]:
        return apply_filters(self.products, self.filter)

    @property
    def total_pages(self) -> int:
        return page_count(len(self.results), self.per_page)

    @property
    def page_items(self) -> List[Product]:
        return paginate(self.results, self.page, self.per_page)

    def go_to_page(self, page: int) -> int:
        self.page = min(max(page, 1), max(self.total_pages, 1))
        return self.page

    def query_params(self) -> Dict[str, str]:
        defaults = CatalogFilter()
        params: Dict[str, str] = {}
        if self.filter.category != defaults.category:
            params["category"] = self.filter.category
        if self.filter.search:
            params["search"] = self.filter.search
        if self.filter.sort != defaults.sort:
            params["sort"] = self.filter.sort.value
        if self.filter.price_min != defaults.price_min:
            params["minPrice"] = f"{self.filter.price_min:g}"
        if self.filter.price_max != defaults.price_max:
            params["maxPrice"] = f"{self.filter.price_max:g}"
        if self.filter.min_rating:
            params["minRating"] = f"{self.filter.min_rating:g}"
        if self.filter.only_reviewed:
            params["reviewed"] = "true"
        if self.page > 1:
            params["page"] = str(self.page)
        return params

    def apply_query_params(self, params: Dict[str, str]) -> None:
        """Restore filters from URL params; values that do not parse keep their defaults."""
        changes = {}
        names = {"category": "category", "search": "search", "sort": "sort", "minPrice": "price_min", "maxPrice": "price_max", "minRating": "min_rating"}
        for key, field in names.items():
            if not params.get(key):
                continue
            try:
                CatalogFilter.model_validate({field: params[key]})
            except ValidationError:
                logger.info("catalog.ignored_param", param=key, value=params[key])
                continue
            changes[field] = params[key]
        if params.get("reviewed") == "true":
            changes["only_reviewed"] = True
        self.set_filter(**changes)
        if params.get("page", "").isdigit():
            self.page = int(params["page"])
