"""
Step outcomes shared by the worker and the job queue.

A processing step either succeeds (``Ok``), fails in a way worth another
attempt (``Retryable``) or fails for good (``Fatal``).
"""

from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar, Union

from ..common.exceptions import TransientProcessingError

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Retryable:
    reason: str
    error: Optional[BaseException] = None


@dataclass(frozen=True)
class Fatal:
    reason: str
    error: Optional[BaseException] = None


Outcome = Union[Ok[Any], Retryable, Fatal]


def failure_from_exception(error: BaseException) -> Union[Retryable, Fatal]:
    """Classify an exception by its type. Only transient errors are retryable."""
    reason = str(error) or type(error).__name__
    if isinstance(error, TransientProcessingError):
        return Retryable(reason, error)
    return Fatal(reason, error)
