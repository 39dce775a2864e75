"""
Customer Segmentation Module

Splits the customers of a window into behaviour segments by comparing the
window with the period before it:
- VIP: window revenue at or above the VIP threshold
- Returning: active in the previous period, or ordered more than once
- New: first seen in this window with a single order
- Inactive: active in the previous period but not in this window
"""

from typing import Dict, List, Optional, Sequence

import structlog

from seller_analytics.config import EngineSettings
from .models import CustomerSegment, CustomerSummary, SegmentSummary

logger = structlog.get_logger(__name__)

SEGMENT_ORDER = (
    CustomerSegment.NEW,
    CustomerSegment.RETURNING,
    CustomerSegment.INACTIVE,
    CustomerSegment.VIP,
)


class SegmentClassifier:
    """
    Customer behaviour segmentation.

    Example:
        classifier = SegmentClassifier(vip_revenue_threshold=1000)
        segments = classifier.summarize(current.customers, previous.customers)
    """

    def __init__(
        self,
        vip_revenue_threshold: Optional[float] = None,
        settings: Optional[EngineSettings] = None,
    ):
        settings = settings or EngineSettings()
        self.vip_revenue_threshold = (
            settings.vip_revenue_threshold if vip_revenue_threshold is None else vip_revenue_threshold
        )

    def classify(self, customer: CustomerSummary, seen_before: bool) -> CustomerSegment:
        if customer.revenue >= self.vip_revenue_threshold > 0:
            return CustomerSegment.VIP
        if seen_before or customer.order_count > 1:
            return CustomerSegment.RETURNING
        return CustomerSegment.NEW

    def assign(
        self,
        current: Sequence[CustomerSummary],
        previous: Optional[Sequence[CustomerSummary]] = None,
    ) -> Dict[str, CustomerSegment]:
        """Segment per customer id, Inactive customers included"""
        previous_ids = {c.customer_id for c in previous or ()}
        current_ids = set()

        segments = {}
        for customer in current:
            current_ids.add(customer.customer_id)
            segments[customer.customer_id] = self.classify(
                customer, customer.customer_id in previous_ids
            )
        for customer_id in sorted(previous_ids - current_ids):
            segments[customer_id] = CustomerSegment.INACTIVE
        return segments

    def summarize(
        self,
        current: Sequence[CustomerSummary],
        previous: Optional[Sequence[CustomerSummary]] = None,
    ) -> List[SegmentSummary]:
        """Customer count and share per segment, in dashboard order"""
        assigned = self.assign(current, previous)
        total = len(assigned)

        counts = {segment: 0 for segment in SEGMENT_ORDER}
        for segment in assigned.values():
            counts[segment] += 1

        logger.debug("Customers segmented", total=total, **{s.value: n for s, n in counts.items()})

        return [
            SegmentSummary(
                segment=segment,
                customers=counts[segment],
                share=(counts[segment] / total) if total else 0.0,
            )
            for segment in SEGMENT_ORDER
        ]
