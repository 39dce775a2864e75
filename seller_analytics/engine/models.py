"""
Engine Data Models

Event records read from the event store, the catalog lookup table, and the
summary records computed per query. Events and summaries are frozen pydantic
models; JSON field names are camelCase for the dashboard client.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import (
    AwareDatetime,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    field_validator,
)
from pydantic.alias_generators import to_camel


class FrozenModel(BaseModel):
    """Immutable model with camelCase aliases"""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


# =============================================================================
# ENUMERATIONS
# =============================================================================

class OrderStatus(str, Enum):
    """Order lifecycle status"""
    PENDING = "Pending"
    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"

    @property
    def counts_as_revenue(self) -> bool:
        return self in (OrderStatus.SHIPPED, OrderStatus.COMPLETED)


class RangeKeyword(str, Enum):
    """Dashboard time range selector"""
    TODAY = "Today"
    WEEK = "Week"
    MONTH = "Month"
    YEAR = "Year"
    CUSTOM = "Custom"


class Granularity(str, Enum):
    """Bucket width"""
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class Severity(str, Enum):
    """Low-stock alert urgency"""
    CRITICAL = "Critical"
    WARNING = "Warning"


class CustomerSegment(str, Enum):
    """Customer behaviour segment"""
    NEW = "New"
    RETURNING = "Returning"
    INACTIVE = "Inactive"
    VIP = "VIP"


def _title_case(value):
    if isinstance(value, str):
        return value.strip().title()
    return value


# =============================================================================
# EVENTS
# =============================================================================

class OrderEvent(FrozenModel):
    """Order recorded by checkout"""
    kind: Literal["order"] = "order"
    id: str = Field(min_length=1)
    product_id: str = Field(min_length=1)
    customer_id: str = Field(min_length=1)
    amount: float = Field(ge=0)
    quantity: int = Field(default=1, ge=1)
    timestamp: AwareDatetime
    status: OrderStatus

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v):
        return _title_case(v)


class ViewEvent(FrozenModel):
    """Product page view recorded by the storefront"""
    kind: Literal["view"] = "view"
    product_id: str = Field(min_length=1)
    timestamp: AwareDatetime


class CartEvent(FrozenModel):
    """Add-to-cart recorded by the storefront"""
    kind: Literal["cart"] = "cart"
    product_id: str = Field(min_length=1)
    customer_id: Optional[str] = None
    quantity: int = Field(default=1, ge=1)
    timestamp: AwareDatetime


class StockEvent(FrozenModel):
    """Stock level change recorded by the catalog"""
    kind: Literal["stock"] = "stock"
    product_id: str = Field(min_length=1)
    delta_quantity: int
    timestamp: AwareDatetime
    resulting_stock: int


Event = Annotated[
    Union[OrderEvent, ViewEvent, CartEvent, StockEvent],
    Field(discriminator="kind"),
]

EVENT_ADAPTER: TypeAdapter = TypeAdapter(Event)


class Product(FrozenModel):
    """Catalog entry"""
    id: str
    name: str
    category: str
    min_stock_threshold: int = Field(default=0, ge=0)


# =============================================================================
# SUMMARIES
# =============================================================================

class BucketSummary(FrozenModel):
    bucket_start: datetime
    bucket_end: datetime
    label: str
    order_count: int = 0
    revenue: float = 0.0


class ProductSummary(FrozenModel):
    product_id: str
    name: str
    category: str
    views: int = 0
    add_to_carts: int = 0
    sales: int = 0
    revenue: float = 0.0
    conversion_rate: float = 0.0
    current_stock: Optional[int] = None


class CategorySummary(FrozenModel):
    category: str
    revenue: float
    share: float


class CustomerSummary(FrozenModel):
    customer_id: str
    order_count: int
    revenue: float
    first_order_at: datetime
    last_order_at: datetime


class KpiSummary(FrozenModel):
    """Headline figures for the window; growth is set when compared"""
    total_revenue: float = 0.0
    total_orders: int = 0
    revenue_orders: int = 0
    average_order_value: float = 0.0
    total_views: int = 0
    total_sales: int = 0
    conversion_rate: float = 0.0
    revenue_growth: Optional[float] = None
    orders_growth: Optional[float] = None
    average_order_value_growth: Optional[float] = None
    conversion_rate_growth: Optional[float] = None


class StatusCount(FrozenModel):
    status: OrderStatus
    order_count: int
    share: float


class HourSummary(FrozenModel):
    """Orders placed in one local hour of the day"""
    hour: int
    label: str
    order_count: int
    revenue: float
    share: float


class WeekdaySummary(FrozenModel):
    """Orders placed on one local weekday (1 = Monday)"""
    weekday: int
    label: str
    order_count: int
    revenue: float
    share: float


class SegmentSummary(FrozenModel):
    segment: CustomerSegment
    customers: int
    share: float


class Alert(FrozenModel):
    product_id: str
    current_stock: int
    min_stock_threshold: int
    ratio: float
    severity: Severity


class PeriodComparison(FrozenModel):
    """Current window versus the preceding window"""
    previous_start: datetime
    previous_end: datetime
    previous_revenue: float
    previous_order_count: int
    revenue_growth: Optional[float] = None
    orders_growth: Optional[float] = None


class ComponentDiagnostic(FrozenModel):
    """Failure of a post-processing component that left its section empty"""
    component: str
    code: str
    message: str


class Diagnostics(FrozenModel):
    dropped_events: int = 0
    out_of_window_events: int = 0
    scanned_events: int = 0
    truncated: bool = False
    errors: List[ComponentDiagnostic] = Field(default_factory=list)


# =============================================================================
# QUERY / RESULT
# =============================================================================

class TimeRange(FrozenModel):
    start: datetime
    end: datetime


class AlertThreshold(FrozenModel):
    min_stock: int
    critical_ratio: Optional[float] = None
    warning_ratio: Optional[float] = None


class DashboardQuery(FrozenModel):
    """Request issued by the dashboard or an API handler"""
    range_keyword: str = RangeKeyword.WEEK.value
    custom_range: Optional[TimeRange] = None
    timezone: Optional[str] = None
    reference_instant: Optional[datetime] = None
    granularity: Optional[str] = None
    sort_field: Optional[str] = None
    sort_direction: str = SortDirection.DESC.value
    limit: Optional[int] = Field(default=None, gt=0)
    alert_thresholds: Optional[Dict[str, AlertThreshold]] = None
    compare_with_previous: bool = False
    include_segments: bool = False
    catalog_alerts: bool = False

    @field_validator("range_keyword", mode="before")
    @classmethod
    def normalize_keyword(cls, v):
        return _title_case(v)


class DashboardResult(FrozenModel):
    range_keyword: RangeKeyword
    timezone: str
    interval_start: datetime
    interval_end: datetime
    granularity: Granularity
    buckets: List[BucketSummary]
    product_summaries: List[ProductSummary]
    category_summaries: List[CategorySummary]
    kpis: KpiSummary = Field(default_factory=KpiSummary)
    order_statuses: List[StatusCount] = Field(default_factory=list)
    peak_hours: List[HourSummary] = Field(default_factory=list)
    top_days: List[WeekdaySummary] = Field(default_factory=list)
    customer_segments: List[SegmentSummary] = Field(default_factory=list)
    alerts: List[Alert] = Field(default_factory=list)
    comparison: Optional[PeriodComparison] = None
    diagnostics: Diagnostics = Field(default_factory=Diagnostics)
