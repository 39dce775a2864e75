"""
Low-Stock Alerting Module

Compares each product's latest known stock level against its minimum stock
threshold and emits Critical or Warning alerts. Severity boundaries are
ratios of stock to threshold, configurable globally and per product.
"""

from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Union

import structlog

from seller_analytics.config import EngineSettings
from .errors import InvalidThresholdError
from .models import Alert, AlertThreshold, Product, ProductSummary, Severity

logger = structlog.get_logger(__name__)

SEVERITY_RANK = {Severity.CRITICAL: 0, Severity.WARNING: 1}

ThresholdSpec = Union[AlertThreshold, int]


def thresholds_from_catalog(catalog: Iterable[Product]) -> Dict[str, AlertThreshold]:
    """Thresholds from the catalog's minimum stock levels (zero means untracked)"""
    return {
        product.id: AlertThreshold(min_stock=product.min_stock_threshold)
        for product in catalog
        if product.min_stock_threshold > 0
    }


class AlertEvaluator:
    """
    Low-stock alert evaluator.

    A product is Critical when ``stock <= threshold * critical_ratio`` and a
    Warning when ``stock < threshold * warning_ratio``. Products without a
    threshold, or without any stock reading in the window, never alert.

    Example:
        evaluator = AlertEvaluator()
        alerts = evaluator.evaluate(summaries, {"sku-1": AlertThreshold(min_stock=10)})
    """

    def __init__(self, settings: Optional[EngineSettings] = None):
        settings = settings or EngineSettings()
        self.critical_ratio = settings.critical_ratio
        self.warning_ratio = settings.warning_ratio

    def evaluate(
        self,
        summaries: Sequence[ProductSummary],
        thresholds: Mapping[str, ThresholdSpec],
        critical_ratio: Optional[float] = None,
        warning_ratio: Optional[float] = None,
    ) -> List[Alert]:
        """
        Evaluate stock levels against thresholds.

        Args:
            summaries: Product summaries carrying ``current_stock``
            thresholds: Minimum stock per product id
            critical_ratio: Override of the configured critical ratio
            warning_ratio: Override of the configured warning ratio

        Returns:
            Alerts ordered Critical first, then most urgent ratio first

        Raises:
            InvalidThresholdError: Non-positive threshold or inverted ratios
        """
        default_critical = self.critical_ratio if critical_ratio is None else critical_ratio
        default_warning = self.warning_ratio if warning_ratio is None else warning_ratio

        alerts = []
        for summary in summaries:
            configured = thresholds.get(summary.product_id)
            if configured is None or summary.current_stock is None:
                continue

            threshold = configured if isinstance(configured, AlertThreshold) else AlertThreshold(min_stock=configured)
            critical = _pick(threshold.critical_ratio, default_critical)
            warning = _pick(threshold.warning_ratio, default_warning)
            _validate(summary.product_id, threshold.min_stock, critical, warning)

            ratio = summary.current_stock / threshold.min_stock
            if ratio <= critical:
                severity = Severity.CRITICAL
            elif ratio < warning:
                severity = Severity.WARNING
            else:
                continue

            alerts.append(Alert(
                product_id=summary.product_id,
                current_stock=summary.current_stock,
                min_stock_threshold=threshold.min_stock,
                ratio=ratio,
                severity=severity,
            ))

        alerts.sort(key=lambda a: (SEVERITY_RANK[a.severity], a.ratio, a.product_id))

        if alerts:
            logger.info(
                "Low stock alerts raised",
                critical=sum(1 for a in alerts if a.severity == Severity.CRITICAL),
                warning=sum(1 for a in alerts if a.severity == Severity.WARNING),
            )
        return alerts


def _pick(override: Optional[float], default: float) -> float:
    return default if override is None else override


def _validate(product_id: str, min_stock: int, critical: float, warning: float) -> None:
    if min_stock <= 0:
        raise InvalidThresholdError(
            f"Minimum stock for {product_id} must be positive",
            detail={"product_id": product_id, "min_stock": min_stock},
        )
    if critical < 0 or warning <= 0 or critical > warning:
        raise InvalidThresholdError(
            f"Alert ratios for {product_id} must satisfy 0 <= critical <= warning",
            detail={"product_id": product_id, "critical_ratio": critical, "warning_ratio": warning},
        )
