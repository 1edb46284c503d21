"""Domain models for the price alert system."""

from src.domain.models.alert import AlertActions, AlertHistoryRecord, AlertSpec
from src.domain.models.algo import (
    LinearRay,
    MultiRay,
    ParallelChannel,
    PriceLevel,
    RectZone,
    SerializedAlgoSpec,
)
from src.domain.models.confirmation import ConfirmationResult, ConfirmationState
from src.domain.models.drawing import ChartPoint, DrawingSpec
from src.domain.models.enums import (
    AlgoKind,
    CandleInterval,
    Condition,
    Confirmation,
    ConfirmationOutcome,
    DrawingType,
    IndicatorKind,
    SoundRepeat,
    TargetType,
    VibrationMode,
)
from src.domain.models.market import CandleHistory, CandleUpdate, Ticker

__all__ = [
    # Enums
    "AlgoKind",
    "CandleInterval",
    "Condition",
    "Confirmation",
    "ConfirmationOutcome",
    "DrawingType",
    "IndicatorKind",
    "SoundRepeat",
    "TargetType",
    "VibrationMode",
    # Alerts
    "AlertActions",
    "AlertSpec",
    "AlertHistoryRecord",
    # Drawings & algos
    "ChartPoint",
    "DrawingSpec",
    "PriceLevel",
    "LinearRay",
    "ParallelChannel",
    "MultiRay",
    "RectZone",
    "SerializedAlgoSpec",
    # Confirmation
    "ConfirmationState",
    "ConfirmationResult",
    # Market data
    "Ticker",
    "CandleUpdate",
    "CandleHistory",
]
