"""
stock_engines.ledger -- Pure arithmetic for the day-indexed stock ledger.

Responsibility:
    The closing-balance formula, forward replay of a sequence of ledger days
    from a known opening, reverse (back-calculated) opening from a known
    final closing, and detection of formula / chain-continuity breaks.

Architecture position:
    Engines -- pure functions, zero I/O.  The movement service feeds stored
    rows in, persists the returned updates.  Reconciliation uses the same
    functions for repair so cascade and repair can never disagree.

Invariants enforced:
    - closing = opening + incoming + incoming_gifts - outgoing
      - pending_outgoing - outgoing_gifts
    - replay sets each day's opening to the previous day's closing.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum

from stock_kernel.db.types import QUANTITY_EPSILON, ZERO
from stock_kernel.domain.dtos import MovementDelta, StockMovementInfo

from stock_engines.tracer import traced_engine


@dataclass(frozen=True, slots=True)
class LedgerDay:
    """Engine view of a stored ledger row."""

    movement_date: date
    opening_balance: Decimal
    delta: MovementDelta
    closing_balance: Decimal

    @classmethod
    def from_info(cls, info: StockMovementInfo) -> LedgerDay:
        return cls(
            movement_date=info.movement_date,
            opening_balance=info.opening_balance,
            delta=info.delta,
            closing_balance=info.closing_balance,
        )


@dataclass(frozen=True, slots=True)
class BalanceUpdate:
    """New opening/closing for a day whose stored values are stale."""

    movement_date: date
    opening_balance: Decimal
    closing_balance: Decimal


@dataclass(frozen=True, slots=True)
class ReplayResult:
    updates: tuple[BalanceUpdate, ...]
    final_closing: Decimal | None


@dataclass(frozen=True, slots=True)
class RepairPlan:
    """Back-calculated opening plus the rows to rewrite."""

    derived_opening: Decimal
    truth_quantity: Decimal
    stored_final_closing: Decimal | None
    updates: tuple[BalanceUpdate, ...]

    @property
    def drift(self) -> Decimal:
        if self.stored_final_closing is None:
            return ZERO
        return self.stored_final_closing - self.truth_quantity


class ViolationKind(str, Enum):
    CLOSING_FORMULA = "closing_formula"
    CHAIN_CONTINUITY = "chain_continuity"


@dataclass(frozen=True, slots=True)
class ChainViolation:
    movement_date: date
    kind: ViolationKind
    expected: Decimal
    actual: Decimal


def closing_balance(opening: Decimal, delta: MovementDelta) -> Decimal:
    """Apply the closing formula."""
    return opening + delta.net


def reverse_opening(closing: Decimal, delta: MovementDelta) -> Decimal:
    """Invert the closing formula: the opening that yields ``closing``."""
    return closing - delta.net


def _summarize_replay(result: ReplayResult) -> dict:
    return {"rows_updated": len(result.updates), "final_closing": result.final_closing}


def _summarize_repair(plan: RepairPlan) -> dict:
    return {
        "derived_opening": plan.derived_opening,
        "drift": plan.drift,
        "rows_updated": len(plan.updates),
    }


@traced_engine("ledger_replay", "1.0", inputs=("opening",), summarize=_summarize_replay)
def replay(
    *,
    opening: Decimal,
    days: Sequence[LedgerDay],
    epsilon: Decimal = ZERO,
) -> ReplayResult:
    """
    Recompute a contiguous run of days starting from ``opening``.

    ``days`` must be in ascending date order.  The first day's opening
    becomes ``opening``; every later day opens at the previous closing.
    Only days whose stored opening or closing differs from the recomputed
    value by more than ``epsilon`` are returned.
    """
    updates: list[BalanceUpdate] = []
    running = opening
    final: Decimal | None = None
    for day in days:
        new_opening = running
        new_closing = closing_balance(new_opening, day.delta)
        if (
            abs(day.opening_balance - new_opening) > epsilon
            or abs(day.closing_balance - new_closing) > epsilon
        ):
            updates.append(
                BalanceUpdate(
                    movement_date=day.movement_date,
                    opening_balance=new_opening,
                    closing_balance=new_closing,
                )
            )
        running = new_closing
        final = new_closing
    return ReplayResult(updates=tuple(updates), final_closing=final)


def back_calculate_opening(
    final_closing: Decimal,
    days: Sequence[LedgerDay],
) -> Decimal:
    """Walk newest to oldest reversing each day to find the first opening."""
    value = final_closing
    for day in reversed(days):
        value = reverse_opening(value, day.delta)
    return value


@traced_engine(
    "ledger_repair", "1.0", inputs=("truth_quantity",), summarize=_summarize_repair,
)
def plan_repair(
    *,
    truth_quantity: Decimal,
    days: Sequence[LedgerDay],
    epsilon: Decimal = QUANTITY_EPSILON,
) -> RepairPlan:
    """
    Plan a ledger rebuild that ends exactly at ``truth_quantity``.

    The first opening is back-calculated from the truth, then the run is
    replayed forward.  Rows within ``epsilon`` of the replay are left alone.
    """
    derived = back_calculate_opening(truth_quantity, days)
    result = replay(opening=derived, days=days, epsilon=epsilon)
    stored_final = days[-1].closing_balance if days else None
    return RepairPlan(
        derived_opening=derived,
        truth_quantity=truth_quantity,
        stored_final_closing=stored_final,
        updates=result.updates,
    )


def find_chain_breaks(
    days: Sequence[LedgerDay],
    epsilon: Decimal = QUANTITY_EPSILON,
) -> tuple[ChainViolation, ...]:
    """Report closing-formula and continuity violations in ascending rows."""
    violations: list[ChainViolation] = []
    previous: LedgerDay | None = None
    for day in days:
        expected_closing = closing_balance(day.opening_balance, day.delta)
        if abs(expected_closing - day.closing_balance) > epsilon:
            violations.append(
                ChainViolation(
                    movement_date=day.movement_date,
                    kind=ViolationKind.CLOSING_FORMULA,
                    expected=expected_closing,
                    actual=day.closing_balance,
                )
            )
        if previous is not None and abs(previous.closing_balance - day.opening_balance) > epsilon:
            violations.append(
                ChainViolation(
                    movement_date=day.movement_date,
                    kind=ViolationKind.CHAIN_CONTINUITY,
                    expected=previous.closing_balance,
                    actual=day.opening_balance,
                )
            )
        previous = day
    return tuple(violations)
