# backend/app/services/valuation.py
from __future__ import annotations

import statistics
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from ..config import settings
from ..domain.errors import ValidationError

BEDROOM_ADJ_PCT = 0.03
BATHROOM_ADJ_PCT = 0.02
LAND_ADJ_PCT_PER_M2 = 0.0001
LAND_ADJ_CAP = 0.10
THIN_SAMPLE_SIZE = 3
THIN_SAMPLE_EXTRA_SPREAD = 0.05


@dataclass(frozen=True)
class ValuationResult:
    estimated_value_min: float
    estimated_value_max: float
    point_estimate: float
    comparables_used: int
    outliers_removed: int
    confidence: float

    def as_dict(self) -> dict[str, Any]:
        return {
            "estimated_value_min": self.estimated_value_min,
            "estimated_value_max": self.estimated_value_max,
            "point_estimate": self.point_estimate,
            "comparables_used": self.comparables_used,
            "outliers_removed": self.outliers_removed,
            "confidence": self.confidence,
        }


def _num(v: Any) -> Optional[float]:
    if isinstance(v, bool):
        return None
    if isinstance(v, (int, float)):
        return float(v)
    return None


def remove_outliers(prices: list[float]) -> list[float]:
    """1.5 x IQR fence; samples under 4 are returned untouched."""
    if len(prices) < 4:
        return list(prices)
    q1, _, q3 = statistics.quantiles(prices, n=4)
    iqr = q3 - q1
    lo, hi = q1 - 1.5 * iqr, q3 + 1.5 * iqr
    return [p for p in prices if lo <= p <= hi]


def adjust_price(subject: Any, comp: Any) -> float:
    price = float(comp.sale_price)
    factor = 1.0

    sb, cb = _num(getattr(subject, "bedrooms", None)), _num(getattr(comp, "bedrooms", None))
    if sb is not None and cb is not None:
        factor += (sb - cb) * BEDROOM_ADJ_PCT

    sba, cba = _num(getattr(subject, "bathrooms", None)), _num(getattr(comp, "bathrooms", None))
    if sba is not None and cba is not None:
        factor += (sba - cba) * BATHROOM_ADJ_PCT

    sl, cl = _num(getattr(subject, "land_size", None)), _num(getattr(comp, "land_size", None))
    if sl is not None and cl is not None:
        land = (sl - cl) * LAND_ADJ_PCT_PER_M2
        factor += max(-LAND_ADJ_CAP, min(LAND_ADJ_CAP, land))

    return price * factor


def estimate_value(
    subject: Any,
    comparables: Iterable[Any],
    *,
    spread_pct: Optional[float] = None,
    min_comparables: Optional[int] = None,
) -> ValuationResult:
    """
    Comparable-sales estimate for `subject`.

    Outliers are dropped on raw sale prices (so a single mispriced sale does
    not skew the median), then each remaining comp is adjusted toward the
    subject's bedrooms / bathrooms / land size and the median taken.
    """
    spread = float(settings.valuation_spread_pct if spread_pct is None else spread_pct)
    need = int(settings.valuation_min_comparables if min_comparables is None else min_comparables)

    usable = [c for c in comparables if (_num(getattr(c, "sale_price", None)) or 0.0) > 0]
    if len(usable) < max(1, need):
        raise ValidationError(
            "not enough comparable sales to value this property",
            details={"usable_comparables": len(usable), "required": max(1, need)},
        )

    kept_prices = set(remove_outliers([float(c.sale_price) for c in usable]))
    kept = [c for c in usable if float(c.sale_price) in kept_prices]
    outliers = len(usable) - len(kept)

    # a comp whose adjustments eat its whole price is too unlike the subject
    adjusted = [p for p in (adjust_price(subject, c) for c in kept) if p > 0]
    if len(adjusted) < max(1, need):
        raise ValidationError(
            "comparable sales are too dissimilar to value this property",
            details={"usable_comparables": len(adjusted), "required": max(1, need), "dissimilar": len(kept) - len(adjusted)},
        )
    point = float(statistics.median(adjusted))

    if len(adjusted) < THIN_SAMPLE_SIZE:
        spread += THIN_SAMPLE_EXTRA_SPREAD

    confidence = max(0.0, min(1.0, 1.0 - spread * 2))
    return ValuationResult(
        estimated_value_min=round(point * (1.0 - spread), 2),
        estimated_value_max=round(point * (1.0 + spread), 2),
        point_estimate=round(point, 2),
        comparables_used=len(adjusted),
        outliers_removed=outliers,
        confidence=round(confidence, 2),
    )
