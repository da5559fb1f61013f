"""
stock_engines.fifo -- FIFO batch ordering and consumption planning.

Responsibility:
    Decide which batches supply a required quantity, and how much from each,
    before any row is touched.  Ordering is earliest expiry first (undated
    batches last), then earliest receipt, then batch id for determinism.

Architecture position:
    Engines -- pure, zero I/O.  BatchAllocator locks candidate rows, calls
    ``plan_fifo_consumption`` and applies the takes.

Invariants enforced:
    - All-or-nothing: when candidates cannot cover the requirement the plan
      has no takes, so the caller mutates nothing.
    - Sum of takes equals the requirement exactly when satisfied.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import UUID

from stock_kernel.db.types import ZERO

from stock_engines.tracer import traced_engine


@dataclass(frozen=True, slots=True)
class BatchCandidate:
    batch_id: UUID
    quantity: Decimal
    received_at: datetime
    expiry_date: date | None = None


@dataclass(frozen=True, slots=True)
class FifoTake:
    batch_id: UUID
    quantity: Decimal
    remaining_after: Decimal


@dataclass(frozen=True, slots=True)
class FifoPlan:
    required: Decimal
    available: Decimal
    takes: tuple[FifoTake, ...] = ()

    @property
    def shortfall(self) -> Decimal:
        return max(self.required - self.available, ZERO)

    @property
    def is_satisfied(self) -> bool:
        return self.available >= self.required


def _as_utc(value: datetime) -> datetime:
    # Naive timestamps (e.g. read back from SQLite) are UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def fifo_sort_key(candidate: BatchCandidate) -> tuple:
    return (
        candidate.expiry_date is None,
        candidate.expiry_date or date.max,
        _as_utc(candidate.received_at),
        str(candidate.batch_id),
    )


def order_for_consumption(
    candidates: Iterable[BatchCandidate],
) -> tuple[BatchCandidate, ...]:
    """Drop empty batches and sort the rest into consumption order."""
    return tuple(
        sorted((c for c in candidates if c.quantity > ZERO), key=fifo_sort_key)
    )


def _summarize_plan(plan: FifoPlan) -> dict:
    return {
        "available": plan.available,
        "allocated": sum((t.quantity for t in plan.takes), ZERO),
        "shortfall": plan.shortfall,
        "batches_used": len(plan.takes),
    }


@traced_engine("fifo", "1.0", inputs=("required",), summarize=_summarize_plan)
def plan_fifo_consumption(
    *,
    candidates: Iterable[BatchCandidate],
    required: Decimal,
) -> FifoPlan:
    """
    Plan consumption of ``required`` units across ``candidates``.

    Whole batches are consumed while the remaining need covers them; the
    first batch larger than the remaining need is partially consumed.

    Raises:
        ValueError: If ``required`` is negative.
    """
    if required < ZERO:
        raise ValueError(f"Required quantity must not be negative: {required}")

    ordered = order_for_consumption(candidates)
    available = sum((c.quantity for c in ordered), ZERO)

    if required == ZERO or available < required:
        return FifoPlan(required=required, available=available)

    takes: list[FifoTake] = []
    remaining = required
    for candidate in ordered:
        if remaining <= ZERO:
            break
        take = min(candidate.quantity, remaining)
        takes.append(
            FifoTake(
                batch_id=candidate.batch_id,
                quantity=take,
                remaining_after=candidate.quantity - take,
            )
        )
        remaining -= take

    return FifoPlan(required=required, available=available, takes=tuple(takes))
