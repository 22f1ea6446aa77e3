"""
Strategy parameter maps and the numeric ranges used to search over them.
"""
import math
from typing import Dict, List, Mapping, Union

from pydantic import BaseModel, Field, model_validator

ParamValue = Union[bool, int, float]
StrategyParameters = Dict[str, ParamValue]


def get_param(parameters: Mapping[str, ParamValue], name: str, default: ParamValue) -> ParamValue:
    """
    Reads a named parameter, falling back to `default` when it is missing.

    The value is coerced to the type of the default, so an integer period
    passed as 20.0 by a grid search comes back as 20, and a switch searched
    over 0 and 1 comes back as a bool.
    """
    if name not in parameters:
        return default
    value = parameters[name]
    if isinstance(default, bool):
        return bool(value)
    if isinstance(default, int):
        return int(round(value))
    return float(value)


class ParameterRange(BaseModel):
    """
    A numeric range for a strategy parameter, enumerated from `min` to `max`
    inclusive in increments of `step`.

    Args:
        min (float): Minimum value (inclusive).
        max (float): Maximum value (inclusive).
        step (float): Step between values; must be positive.
    """
    min: float
    max: float
    step: float = Field(..., gt=0, description="Step size between values.")

    @model_validator(mode="after")
    def _check_bounds(self) -> "ParameterRange":
        if self.max < self.min:
            raise ValueError(f"max ({self.max}) must not be below min ({self.min}).")
        return self

    def __len__(self) -> int:
        # Tolerance absorbs float round-off when max lies exactly on a step.
        return int(math.floor((self.max - self.min) / self.step + 1e-9)) + 1

    def values(self) -> List[float]:
        """
        Enumerates every value of the range, computed by index so that
        repeated additions cannot accumulate round-off.
        """
        return [self._clean(self.min + i * self.step) for i in range(len(self))]

    @staticmethod
    def _clean(value: float) -> float:
        return round(value, 10)


ParameterGrid = Dict[str, ParameterRange]
