"""
stock_engines.owed -- Owed quantities per invoice line from delivery history.

Responsibility:
    Derive, for every invoice line, how much of the main item and of the
    gift is still owed, given the increments recorded by earlier deliveries.
    Also splits a manual main-item quantity between the ordered quantity and
    a same-item gift, and derives the invoice delivery status.

Architecture position:
    Engines -- pure, zero I/O.

Invariants enforced:
    - Owed quantities are never negative (over-delivered history clamps to 0).
    - History rows are matched to lines by invoice line id, so two lines for
      the same item are settled independently.
    - Legacy flat gift quantities on lines without a same-item gift count
      towards the main item.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from stock_kernel.db.types import ZERO
from stock_kernel.domain.dtos import (
    DeliveredLineInfo,
    DeliveryStatus,
    GiftKind,
    GiftSpec,
    InvoiceLineInfo,
)

from stock_engines.tracer import traced_engine


@dataclass(frozen=True, slots=True)
class LineOwed:
    invoice_item_id: UUID
    item_id: UUID
    gift: GiftSpec
    ordered: Decimal
    delivered: Decimal
    gift_delivered: Decimal

    @property
    def owed_main(self) -> Decimal:
        return max(self.ordered - self.delivered, ZERO)

    @property
    def owed_gift(self) -> Decimal:
        return max(self.gift.quantity - self.gift_delivered, ZERO)

    @property
    def main_stock_need(self) -> Decimal:
        """Units to draw from the main item's own stock."""
        if self.gift.kind == GiftKind.SAME_ITEM:
            return self.owed_main + self.owed_gift
        return self.owed_main

    @property
    def distinct_gift_need(self) -> Decimal:
        """Units to draw from the distinct gift item's stock."""
        if self.gift.kind == GiftKind.DISTINCT_ITEM:
            return self.owed_gift
        return ZERO

    @property
    def is_settled(self) -> bool:
        return self.owed_main == ZERO and self.owed_gift == ZERO


def _summarize_owed(owed: tuple[LineOwed, ...]) -> dict:
    return {
        "lines_open": sum(1 for line in owed if not line.is_settled),
        "owed_main": sum((line.owed_main for line in owed), ZERO),
        "owed_gift": sum((line.owed_gift for line in owed), ZERO),
    }


@traced_engine("owed", "1.0", summarize=_summarize_owed)
def compute_owed(
    *,
    lines: Sequence[InvoiceLineInfo],
    history: Sequence[DeliveredLineInfo],
) -> tuple[LineOwed, ...]:
    """Owed main and gift quantities per line, in line order."""
    delivered: dict[UUID, Decimal] = defaultdict(lambda: ZERO)
    same_gift: dict[UUID, Decimal] = defaultdict(lambda: ZERO)
    distinct_gift: dict[tuple[UUID, UUID], Decimal] = defaultdict(lambda: ZERO)

    for row in history:
        delivered[row.invoice_item_id] += row.quantity
        same_gift[row.invoice_item_id] += row.gift_qty
        if row.gift_item_id is not None:
            distinct_gift[(row.invoice_item_id, row.gift_item_id)] += row.gift_quantity

    result: list[LineOwed] = []
    for line in lines:
        key = line.invoice_item_id
        main_delivered = delivered[key]
        if line.gift.kind == GiftKind.SAME_ITEM:
            gift_delivered = same_gift[key]
        else:
            main_delivered += same_gift[key]
            if line.gift.kind == GiftKind.DISTINCT_ITEM:
                gift_delivered = distinct_gift[(key, line.gift.item_id)]
            else:
                gift_delivered = ZERO
        result.append(
            LineOwed(
                invoice_item_id=key,
                item_id=line.item_id,
                gift=line.gift,
                ordered=line.quantity,
                delivered=main_delivered,
                gift_delivered=gift_delivered,
            )
        )
    return tuple(result)


def is_fully_settled(owed: Sequence[LineOwed]) -> bool:
    return all(line.is_settled for line in owed)


def split_main_quantity(owed: LineOwed, quantity: Decimal) -> tuple[Decimal, Decimal]:
    """
    Split units drawn from the main item into (ordered part, same-item gift).

    The ordered quantity is filled first.  Callers reject quantities above
    ``owed.main_stock_need`` before splitting.
    """
    main_part = min(quantity, owed.owed_main)
    return main_part, quantity - main_part


def delivery_status(owed: Sequence[LineOwed]) -> DeliveryStatus:
    if is_fully_settled(owed):
        return DeliveryStatus.DELIVERED
    if any(line.delivered > ZERO or line.gift_delivered > ZERO for line in owed):
        return DeliveryStatus.PARTIAL
    return DeliveryStatus.NOT_DELIVERED
