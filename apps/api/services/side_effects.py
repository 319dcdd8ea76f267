"""
Outcome records for best-effort side effects.

A lifecycle transition is committed before any of its side effects run. Each
side effect reports back as a SideEffectOutcome so callers (and tests) can see
what happened without a side effect ever being able to fail the transition.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class SideEffectOutcome:
    name: str
    succeeded: bool
    skipped: bool = False
    error: Optional[str] = None
    detail: Optional[str] = None

    @classmethod
    def ok(cls, name: str, detail: Optional[str] = None) -> "SideEffectOutcome":
        return cls(name=name, succeeded=True, detail=detail)

    @classmethod
    def skip(cls, name: str, reason: str) -> "SideEffectOutcome":
        return cls(name=name, succeeded=False, skipped=True, detail=reason)

    @classmethod
    def fail(cls, name: str, error: str) -> "SideEffectOutcome":
        return cls(name=name, succeeded=False, error=error)


def attempt(name: str, operation: Callable[[], Optional[str]], log_context: Optional[dict] = None) -> SideEffectOutcome:
    """
    Run `operation`, converting any exception into a failed outcome.

    The operation may return a short detail string (e.g. a url) for the
    success outcome.
    """
    try:
        detail = operation()
    except Exception as e:
        logger.error(
            f"Side effect {name} failed: {e}",
            exc_info=True,
            extra={"extra_fields": {"side_effect": name, **(log_context or {})}},
        )
        return SideEffectOutcome.fail(name, str(e))
    return SideEffectOutcome.ok(name, detail=detail)
