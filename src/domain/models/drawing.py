"""Chart drawing models referenced by drawing alerts."""

from pydantic import BaseModel, Field

from src.domain.models.enums import DrawingType


class ChartPoint(BaseModel):
    """A raw chart anchor: time in epoch milliseconds and price."""

    model_config = {"frozen": True}

    time: float
    price: float


class DrawingSpec(BaseModel):
    """Geometric annotation owned by the chart UI.

    hline uses one point, trendline/rect two, channel/fib three
    (the third point sets the channel height).
    """

    id: str
    symbol: str = ""
    type: DrawingType
    points: list[ChartPoint] = Field(default_factory=list, max_length=3)
    color: str = "#2962FF"
    width: int = 1
