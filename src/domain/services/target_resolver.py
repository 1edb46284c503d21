"""Target resolution for drawing alerts.

Two steps:
1. ``serialize_drawing`` turns a chart drawing into a portable,
   timestamp-independent algo spec (once per drawing edit).
2. ``resolve_targets`` evaluates that spec at a timestamp, giving one
   price, several prices (channels, fib rays, zones) or None when the
   spec is inactive or malformed.

Ray values move with time, so targets must be resolved fresh on every
evaluation tick.
"""

from typing import Any

from pydantic import ValidationError

from src.domain.models.algo import (
    LinearRay,
    MultiRay,
    ParallelChannel,
    PriceLevel,
    RectZone,
    SerializedAlgoSpec,
    algo_adapter,
)
from src.domain.models.drawing import ChartPoint, DrawingSpec
from src.domain.models.enums import DrawingType
from src.domain.rules import FIB_CHANNEL_LEVELS
from src.infrastructure.logging import get_logger

logger = get_logger(__name__)


def _slope(p1: ChartPoint, p2: ChartPoint) -> float | None:
    """Price change per millisecond between two points, None if vertical."""
    dt = p2.time - p1.time
    if dt == 0:
        return None
    return (p2.price - p1.price) / dt


def _channel_height(p1: ChartPoint, slope: float, p3: ChartPoint) -> float:
    """Vertical distance of the third point from the main ray at its time."""
    ray_at_p3 = p1.price + slope * (p3.time - p1.time)
    return p3.price - ray_at_p3


def serialize_drawing(drawing: DrawingSpec | None) -> SerializedAlgoSpec | None:
    """Convert a chart drawing into its serialized algo spec.

    - hline -> price_level
    - trendline -> linear_ray
    - channel -> parallel_channel with offsets [0, height]
    - fib -> multi_ray with one offset per Fibonacci level
    - rect -> rect_zone with independent min/max of time and price

    Args:
        drawing: Drawing to convert

    Returns:
        Serialized spec, or None if the drawing lacks the points it needs
        or its two anchor points share a timestamp
    """
    if drawing is None or not drawing.points:
        return None

    points = drawing.points

    if drawing.type == DrawingType.HLINE:
        return PriceLevel(price=points[0].price)

    if drawing.type == DrawingType.RECT:
        if len(points) < 2:
            return None
        p1, p2 = points[0], points[1]
        return RectZone(
            t_start=min(p1.time, p2.time),
            t_end=max(p1.time, p2.time),
            p_high=max(p1.price, p2.price),
            p_low=min(p1.price, p2.price),
        )

    if len(points) < 2:
        return None
    p1, p2 = points[0], points[1]
    slope = _slope(p1, p2)
    if slope is None:
        logger.warning(f"Drawing {drawing.id} has a vertical ray, cannot serialize")
        return None

    if drawing.type == DrawingType.TRENDLINE:
        return LinearRay(t0=p1.time, p0=p1.price, slope=slope)

    if len(points) < 3:
        return None
    height = _channel_height(p1, slope, points[2])

    if drawing.type == DrawingType.CHANNEL:
        return ParallelChannel(
            t0=p1.time, p0=p1.price, slope=slope, offsets=(0.0, height)
        )

    if drawing.type == DrawingType.FIB:
        return MultiRay(
            t0=p1.time,
            p0=p1.price,
            slope=slope,
            offsets=tuple(height * level for level in FIB_CHANNEL_LEVELS),
        )

    return None


def resolve_targets(
    spec: SerializedAlgoSpec | dict[str, Any] | None,
    timestamp: float,
) -> float | list[float] | None:
    """Resolve a serialized spec into price target(s) at a timestamp.

    Args:
        spec: Serialized algo spec (model or raw portable dict)
        timestamp: Evaluation time in epoch milliseconds

    Returns:
        A single price (price_level, linear_ray), a list of prices
        (parallel_channel, multi_ray, rect_zone), or None when the zone
        is outside its time window or the algo spec is unknown/malformed
    """
    if spec is None:
        return None

    if isinstance(spec, dict):
        try:
            spec = algo_adapter.validate_python(spec)
        except ValidationError:
            return None

    match spec:
        case PriceLevel(price=price):
            return price
        case LinearRay():
            return spec.value_at(timestamp)
        case ParallelChannel() | MultiRay():
            base = spec.value_at(timestamp)
            return [base + offset for offset in spec.offsets]
        case RectZone():
            if timestamp < spec.t_start or timestamp > spec.t_end:
                return None
            return [spec.p_high, spec.p_low]
        case _:
            return None


def resolve_target_list(
    spec: SerializedAlgoSpec | dict[str, Any] | None,
    timestamp: float,
) -> list[float]:
    """Resolve targets as a list (empty when inactive or malformed)."""
    result = resolve_targets(spec, timestamp)
    if result is None:
        return []
    if isinstance(result, list):
        return result
    return [result]
