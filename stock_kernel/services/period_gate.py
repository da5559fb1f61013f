"""
Period gate -- "are the books open?" as an injected capability.

The accounting subsystem owns opening and closing the books.  Stock writes
that must respect it receive a ``PeriodGate`` and call
``require_open_period`` before touching any row.
"""

from typing import Protocol, runtime_checkable

from stock_kernel.exceptions import BooksClosedError
from stock_kernel.logging_config import get_logger

logger = get_logger("services.period_gate")


@runtime_checkable
class PeriodGate(Protocol):
    def is_period_open(self) -> bool: ...


class StaticPeriodGate:
    """In-process gate toggled explicitly (tests, CLI, single-tenant setups)."""

    def __init__(self, is_open: bool = True):
        self._is_open = is_open

    def is_period_open(self) -> bool:
        return self._is_open

    def open(self) -> None:
        self._is_open = True

    def close(self) -> None:
        self._is_open = False


def require_open_period(gate: PeriodGate | None, operation: str) -> None:
    """
    Raise BooksClosedError when a gate is present and reports closed.

    A missing gate means the caller has already enforced the check.
    """
    if gate is None or gate.is_period_open():
        return
    logger.warning("books_closed_rejected", extra={"operation": operation})
    raise BooksClosedError(operation)
