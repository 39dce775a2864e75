"""
Product Ranking Module

Field-parameterised sorting of product summaries with a deterministic total
order: ties on the requested field always fall back to product id ascending,
whatever the direction, so repeated queries never reshuffle tied rows.
"""

from functools import cmp_to_key
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import structlog

from .errors import UnknownSortFieldError
from .models import ProductSummary, SortDirection

logger = structlog.get_logger(__name__)

# Dashboard field names and their summary attributes
SORT_FIELDS: Dict[str, str] = {
    "views": "views",
    "addToCarts": "add_to_carts",
    "sales": "sales",
    "conversionRate": "conversion_rate",
    "revenue": "revenue",
    "name": "name",
}
_ALIASES = {attr: attr for attr in SORT_FIELDS.values()}
_ALIASES.update({field.lower(): attr for field, attr in SORT_FIELDS.items()})


def resolve_field(field: str) -> str:
    """Summary attribute for a dashboard or snake_case field name"""
    attr = SORT_FIELDS.get(field) or _ALIASES.get(field) or _ALIASES.get(str(field).lower())
    if attr is None:
        raise UnknownSortFieldError(
            f"Unknown sort field: {field}",
            detail={"field": field, "allowed": sorted(SORT_FIELDS)},
        )
    return attr


def resolve_direction(direction: Union[str, SortDirection, None]) -> SortDirection:
    if direction is None:
        return SortDirection.DESC
    if isinstance(direction, SortDirection):
        return direction
    try:
        return SortDirection(str(direction).strip().lower())
    except ValueError as e:
        raise UnknownSortFieldError(
            f"Unknown sort direction: {direction}",
            detail={"direction": direction, "allowed": [d.value for d in SortDirection]},
            cause=e,
        )


def _sort_value(value: Any) -> Any:
    # Names compare case-insensitively, then by exact text
    if isinstance(value, str):
        return (value.casefold(), value)
    return value


def _comparator(attr: str, direction: SortDirection) -> Callable[[ProductSummary, ProductSummary], int]:
    sign = -1 if direction == SortDirection.DESC else 1

    def compare(a: ProductSummary, b: ProductSummary) -> int:
        left, right = _sort_value(getattr(a, attr)), _sort_value(getattr(b, attr))
        if left != right:
            return sign * (1 if left > right else -1)
        if a.product_id != b.product_id:
            return 1 if a.product_id > b.product_id else -1
        return 0

    return compare


class Ranker:
    """
    Sorts product summaries by any dashboard column.

    Example:
        ranker = Ranker()
        ranked = ranker.sort(products, "revenue", "desc")
        top_viewed = ranker.top(products, "views", limit=5)
    """

    def sort(
        self,
        summaries: Sequence[ProductSummary],
        field: str,
        direction: Union[str, SortDirection, None] = SortDirection.DESC,
    ) -> List[ProductSummary]:
        """
        Sort summaries by ``field``.

        Raises:
            UnknownSortFieldError: Unknown field or direction
        """
        attr = resolve_field(field)
        order = resolve_direction(direction)
        ranked = sorted(summaries, key=cmp_to_key(_comparator(attr, order)))
        logger.debug("Ranked products", field=attr, direction=order.value, count=len(ranked))
        return ranked

    def top(
        self,
        summaries: Sequence[ProductSummary],
        field: str,
        limit: Optional[int] = 5,
    ) -> List[ProductSummary]:
        """Highest ``limit`` summaries by ``field``"""
        ranked = self.sort(summaries, field, SortDirection.DESC)
        return ranked if limit is None else ranked[:limit]
