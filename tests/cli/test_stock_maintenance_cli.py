"""
Tests for scripts/stock_maintenance.py.

The CLI is driven through ``main(argv, session_factory)`` with sessions
bound to the test transaction, so commits only release savepoints.
"""

from datetime import date
from decimal import Decimal

import pytest

from scripts.stock_maintenance import build_parser, main
from stock_kernel.domain.dtos import MovementDelta
from stock_kernel.selectors.movement_selector import MovementSelector
from stock_kernel.services.inventory_stock_service import InventoryStockService
from stock_kernel.services.stock_movement_service import LedgerPolicy, StockMovementService


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    monkeypatch.delenv("STOCK_LEDGER_CONFIG", raising=False)
    monkeypatch.delenv("STOCK_LEDGER_DATABASE_URL", raising=False)


class TestParser:

    def test_parses_filters(self):
        args = build_parser().parse_args(
            ["initialize", "--day", "2024-01-31", "--dry-run"],
        )
        assert args.command == "initialize"
        assert args.day == date(2024, 1, 31)
        assert args.dry_run

    def test_usage_errors_exit_2(self, capsys):
        assert main(["rebuild"]) == 2
        assert main(["sync", "--warehouse", "not-a-uuid"]) == 2

    def test_bad_config_exits_2(self, tmp_path, capsys):
        assert main(["sync", "--config", str(tmp_path / "missing.yaml")]) == 2
        assert "ERROR" in capsys.readouterr().err


class TestCommands:

    def test_sync(self, session, session_factory, make_batch, warehouse_id, item_a, capsys):
        make_batch(warehouse_id, item_a, 6, sync_aggregate=False)

        code = main(["sync", "--warehouse", str(warehouse_id)], session_factory=session_factory)

        assert code == 0
        out = capsys.readouterr().out
        assert "stock.sync_with_batches: completed" in out
        assert InventoryStockService(session).get_quantity(warehouse_id, item_a) == Decimal("6")

    def test_initialize(self, session, session_factory, make_stock, warehouse_id, item_a):
        make_stock(warehouse_id, item_a, 8)

        code = main(
            ["initialize", "--item", str(item_a), "--day", "2024-03-01"],
            session_factory=session_factory,
        )

        assert code == 0
        row = MovementSelector(session).get_movement(warehouse_id, item_a, date(2024, 3, 1))
        assert row.closing_balance == Decimal("8")

    def test_repair_dry_run_writes_nothing(
        self, session, session_factory, make_stock, warehouse_id, item_a, capsys,
    ):
        StockMovementService(session, policy=LedgerPolicy(bootstrap_from_aggregate=False)).record_movement(
            warehouse_id, item_a, date(2024, 1, 1), MovementDelta.receipt("4"),
        )
        make_stock(warehouse_id, item_a, 9)

        code = main(["repair", "--dry-run"], session_factory=session_factory)

        assert code == 0
        assert "Dry run" in capsys.readouterr().out
        assert MovementSelector(session).latest_closing(warehouse_id, item_a) == Decimal("4")
