"""Per-step outcome type for the pipeline.

Each pipeline step returns one of:

- ``Ok(value)``: the step succeeded.
- ``Recovered(reason, error)``: the step failed in a way the pipeline tolerates;
  the controller continues with a fallback.
- ``Fatal(error)``: the step failed and the run must transition to ``failed``.
"""

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Recovered:
    reason: str
    error: BaseException | None = None


@dataclass(frozen=True)
class Fatal:
    error: BaseException


StepOutcome = Ok[T] | Recovered | Fatal


def value_or(outcome: StepOutcome[T], default: T) -> T:
    """Return the Ok value, or ``default`` for a Recovered outcome.

    Raises:
        The wrapped error for a Fatal outcome.
    """
    if isinstance(outcome, Ok):
        return outcome.value
    if isinstance(outcome, Fatal):
        raise outcome.error
    return default
