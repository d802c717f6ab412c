"""
Explicit result values returned by provider adapters.

Adapters that talk to third-party services (shipping, notifications) hand
back a ProviderResult instead of raising, so that every caller decides
whether a failure matters for the operation it is running.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class ProviderResult:
    """Outcome of a single provider call."""
    success: bool
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    status_code: Optional[int] = None

    @classmethod
    def ok(cls, data: Optional[Dict[str, Any]] = None, status_code: int = None) -> "ProviderResult":
        return cls(success=True, data=data or {}, status_code=status_code)

    @classmethod
    def fail(cls, error: str, status_code: int = None, data: Optional[Dict[str, Any]] = None) -> "ProviderResult":
        return cls(success=False, data=data or {}, error=error, status_code=status_code)

    def __bool__(self) -> bool:
        return self.success
