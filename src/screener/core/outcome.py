"""Tagged result type used wherever a stage can fail with an explainable cause."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Generic, TypeVar

from screener.core.enums import CauseCode

T = TypeVar("T")
U = TypeVar("U")

_EMPTY: Mapping[str, Any] = MappingProxyType({})


def _freeze(details: Mapping[str, Any] | None) -> Mapping[str, Any]:
    if not details:
        return _EMPTY
    return MappingProxyType(dict(details))


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Either a value or a cause code, always with the owner and its details.

    Build instances with :meth:`ok` and :meth:`fail`; the details mapping is
    copied on construction and is read-only afterwards.
    """

    success: bool
    value: T | None = None
    cause_code: CauseCode = CauseCode.NONE
    owner: str = ""
    details: Mapping[str, Any] = field(default_factory=lambda: _EMPTY)

    @classmethod
    def ok(
        cls,
        value: T,
        owner: str = "",
        details: Mapping[str, Any] | None = None,
    ) -> Outcome[T]:
        return cls(True, value, CauseCode.NONE, owner or "", _freeze(details))

    @classmethod
    def fail(
        cls,
        cause_code: CauseCode,
        owner: str = "",
        details: Mapping[str, Any] | None = None,
    ) -> Outcome[T]:
        if cause_code is CauseCode.NONE:
            raise ValueError("a failed outcome needs a cause code other than NONE")
        return cls(False, None, cause_code, owner or "", _freeze(details))

    @property
    def failed(self) -> bool:
        return not self.success

    @property
    def reason(self) -> str:
        """Human-readable one-liner suitable for a report table cell."""
        if self.success:
            return "ok"
        detail = self.details.get("reason")
        if detail is None and self.details:
            key, val = next(iter(self.details.items()))
            detail = f"{key}={val}"
        return f"{self.cause_code.value}: {detail}" if detail else self.cause_code.value

    def map(self, fn: Callable[[T], U]) -> Outcome[U]:
        """Transform the value of a success; failures pass through unchanged."""
        if not self.success:
            return Outcome(False, None, self.cause_code, self.owner, self.details)
        return Outcome(True, fn(self.value), CauseCode.NONE, self.owner, self.details)

    def to_dict(self) -> dict[str, Any]:
        value = self.value
        if hasattr(value, "model_dump"):
            value = value.model_dump()
        return {
            "success": self.success,
            "value": value,
            "cause_code": self.cause_code.value,
            "owner": self.owner,
            "details": dict(self.details),
        }
