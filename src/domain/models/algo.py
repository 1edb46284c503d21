"""Serialized, timestamp-independent target algorithms.

A drawing is turned into one of these variants once per edit; the
target resolver then evaluates it for any timestamp. The union is
discriminated on ``algo`` so a persisted JSON blob validates straight
into the right variant.
"""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


class _AlgoBase(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class PriceLevel(_AlgoBase):
    """Constant horizontal price."""

    algo: Literal["price_level"] = "price_level"
    price: float


class _RayBase(_AlgoBase):
    t0: float
    p0: float
    slope: float  # Price per millisecond

    def value_at(self, timestamp: float) -> float:
        """Base ray value: ``p0 + slope * (timestamp - t0)``."""
        return self.p0 + self.slope * (timestamp - self.t0)


class LinearRay(_RayBase):
    """Infinite ray through one anchor point."""

    algo: Literal["linear_ray"] = "linear_ray"


class ParallelChannel(_RayBase):
    """Main ray plus one parallel ray: offsets are ``[0, height]``."""

    algo: Literal["parallel_channel"] = "parallel_channel"
    offsets: tuple[float, float]


class MultiRay(_RayBase):
    """Fibonacci channel: one parallel ray per ratio level."""

    algo: Literal["multi_ray"] = "multi_ray"
    offsets: tuple[float, ...]


class RectZone(_AlgoBase):
    """Time-bounded price zone."""

    algo: Literal["rect_zone"] = "rect_zone"
    t_start: float
    t_end: float
    p_high: float
    p_low: float


SerializedAlgoSpec = Annotated[
    Union[PriceLevel, LinearRay, ParallelChannel, MultiRay, RectZone],
    Field(discriminator="algo"),
]

algo_adapter: TypeAdapter[SerializedAlgoSpec] = TypeAdapter(SerializedAlgoSpec)
