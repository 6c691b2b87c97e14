"""
models/result.py
----------------
Tagged result variants returned by the pipeline facade.

``Ok`` wraps a successful value; ``Err`` names the failure category
(:class:`ErrorKind`), keeps the raising exception and any partial report
produced before the failure.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Generic, TypeVar, Union

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Error taxonomy shared by every engine exception."""
    CONNECTIVITY = "connectivity"
    SCHEMA_VALIDATION = "schema_validation"
    DATA_QUALITY = "data_quality"
    CLASSIFICATION_UNCERTAINTY = "classification_uncertainty"
    EXECUTION = "execution"
    VALIDATION_FAILURE = "validation_failure"


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T
    ok: ClassVar[bool] = True

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Err:
    kind: ErrorKind
    message: str
    error: BaseException | None = None
    report: Any = None
    ok: ClassVar[bool] = False

    def unwrap(self) -> Any:
        if self.error is not None:
            raise self.error
        raise RuntimeError(self.message)

    @classmethod
    def from_exception(cls, exc: BaseException) -> "Err":
        """Build an ``Err`` from an engine exception (kind and report included)."""
        kind = getattr(exc, "kind", ErrorKind.EXECUTION)
        return cls(kind=kind, message=str(exc), error=exc, report=getattr(exc, "report", None))


Result = Union[Ok[T], Err]
