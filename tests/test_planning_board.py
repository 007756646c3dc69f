"""
Tests for PlanningBoard: pool/queue moves, ETAs and per-bay productivity.
"""

import random
import threading
from datetime import datetime

import pytest

from yard_core import (
    BayLoad,
    PlanningBoard,
    PlanInvariantError,
    StackerConfig,
    UnknownStackerError,
)

from conftest import PLAN_DATE, unit


def _where_is(board, item_id):
    places = [("pool", it) for it in board.pool() if it.item_id == item_id]
    for sid in board.stackers:
        places += [(sid, it) for it in board.queue(sid) if it.item_id == item_id]
    return [p for p, _ in places]


class TestAssign:
    """Tests for assign() / unassign() / clear_queue()."""

    def test_assign_moves_out_of_pool(self, board):
        moved = board.assign(["u1"], "2")

        assert [it.item_id for it in moved] == ["u1"]
        assert [it.item_id for it in board.queue("2")] == ["u1"]
        assert "u1" not in {it.item_id for it in board.pool()}

    def test_assign_appends_in_given_order(self, board, stock_items):
        board.assign(["u3"], "1")
        board.assign([stock_items[4], "u1"], "1")

        assert [it.item_id for it in board.queue("1")] == ["u3", "u5", "u1"]

    def test_assign_skips_non_pool_members(self, board):
        board.assign(["u1"], "1")
        moved = board.assign(["u1", "nope", "u2"], "2")

        assert [it.item_id for it in moved] == ["u2"]
        assert [it.item_id for it in board.queue("1")] == ["u1"]
        assert [it.item_id for it in board.queue("2")] == ["u2"]

    def test_assign_same_id_twice_in_one_call(self, board):
        board.assign(["u1", "u1"], "1")
        assert [it.item_id for it in board.queue("1")] == ["u1"]

    def test_unassign_returns_to_pool(self, board):
        board.assign(["u1"], "2")
        item = board.unassign("u1", "2")

        assert item.item_id == "u1"
        assert board.queue("2") == []
        assert board.pool()[-1].item_id == "u1"

    def test_unassign_wrong_queue_is_noop(self, board):
        board.assign(["u1"], "2")
        assert board.unassign("u1", "1") is None
        assert board.location_of("u1") == "2"

    def test_clear_queue_returns_everything(self, board):
        board.assign(["u1", "u2", "u3"], "3")
        returned = board.clear_queue("3")

        assert {it.item_id for it in returned} == {"u1", "u2", "u3"}
        assert board.queue("3") == []
        assert len(board.pool()) == 6

    def test_unknown_stacker_raises(self, board):
        with pytest.raises(UnknownStackerError):
            board.assign(["u1"], "9")
        with pytest.raises(UnknownStackerError):
            board.queue("9")
        assert board.location_of("u1") == "pool"

    def test_repeated_ids_in_snapshot_are_ignored(self):
        b = PlanningBoard.from_stock([unit("x", "A101A1"), unit("x", "A101A2")])
        assert len(b.pool()) == 1


class TestPlanInvariant:
    """Every unit is in exactly one place after any sequence of moves."""

    def test_random_sequence(self, board, stock_items):
        rng = random.Random(7)
        ids = [it.item_id for it in stock_items]

        for _ in range(400):
            op = rng.choice(["assign", "unassign", "clear"])
            sid = rng.choice(board.stackers)
            if op == "assign":
                board.assign(rng.sample(ids, rng.randint(1, 3)), sid)
            elif op == "unassign":
                board.unassign(rng.choice(ids), sid)
            else:
                board.clear_queue(sid)

            for iid in ids:
                assert len(_where_is(board, iid)) == 1
            board.validate()

        assert len(board.all_items()) == len(ids)

    def test_concurrent_assign_never_duplicates(self, board, stock_items):
        ids = [it.item_id for it in stock_items]

        def worker(sid):
            for _ in range(200):
                board.assign(ids, sid)
                board.clear_queue(sid)

        threads = [threading.Thread(target=worker, args=(sid,)) for sid in board.stackers]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        board.validate()
        assert sorted(it.item_id for it in board.all_items()) == sorted(ids)

    def test_validate_detects_corruption(self, board):
        board.assign(["u1"], "1")
        board._queues["2"].append(board.queue("1")[0])
        with pytest.raises(PlanInvariantError):
            board.validate()


class TestTiming:
    """Tests for estimate_time() and friends."""

    def test_eta_scenario(self, board):
        board.configure("1", start="08:00", mph=15)

        assert board.estimate_time("1", 0) == datetime(2026, 10, 18, 8, 0)
        assert board.eta_label("1", 0) == "08:00"
        assert board.eta_label("1", 1) == "08:04"

    def test_eta_is_strictly_increasing(self, board):
        board.configure("2", start="07:15", mph=90)
        gap = 60 / 90
        for i in range(50):
            a = board.estimate_time("2", i)
            b = board.estimate_time("2", i + 1)
            assert b > a
            assert (b - a).total_seconds() == pytest.approx(gap * 60)

    def test_label_truncates_to_minute(self, board):
        board.configure("3", start="08:00", mph=7)
        assert board.eta_label("3", 1) == "08:08"

    def test_invalid_rate_is_replaced(self, board):
        cfg = board.configure("1", mph=0)
        assert cfg.mph == 1
        assert board.eta_label("1", 1) == "09:00"

    def test_configure_keeps_other_field(self, board):
        board.configure("1", start="06:00")
        board.configure("1", mph=30)
        assert board.config_for("1") == StackerConfig.parse("06:00", 30)

    def test_total_minutes_and_label(self, board):
        board.assign(["u1", "u2", "u3", "u4", "u5"], "1")
        board.configure("1", mph=4)
        assert board.total_minutes("1") == 75.0
        assert board.duration_label("1") == "1h 15m"


class TestQueueViews:
    """Tests for productivity_summary(), search() and plan_rows()."""

    def test_productivity_summary(self, board):
        board.assign(["u1", "u5", "u2"], "1")
        assert board.productivity_summary("1") == [
            BayLoad(bay="A101", moves=2, minutes=8.0),
            BayLoad(bay="B210", moves=1, minutes=4.0),
        ]

    def test_search(self, board):
        board.assign(["u1", "u3", "u5"], "1")
        assert board.search("1", "tghu") == 1
        assert board.search("1", "3000005") == 2
        assert board.search("1", "ZZZZ") is None
        assert board.search("1", "") is None

    def test_plan_rows(self, board):
        board.assign(["u3", "u1"], "2")
        rows = board.plan_rows("2")

        assert [r.seq for r in rows] == [1, 2]
        assert [r.eta_label for r in rows] == ["08:00", "08:04"]
        assert rows[0].cntr == "TGHU2000003"
        assert rows[0].service == "EXPORTACAO"
        assert rows[0].location == "A101C1"
        assert rows[0].quadra == "A1"


class TestPoolViews:
    """Tests for filter_pool(), planned_ids() and all_items()."""

    def test_filter_pool(self, board):
        assert {it.item_id for it in board.filter_pool("caiu")} == {"u5", "u6"}
        assert {it.item_id for it in board.filter_pool("export")} == {"u3"}
        assert len(board.filter_pool("")) == 6

    def test_planned_sets(self, board):
        board.assign(["u1"], "1")
        board.assign(["u4"], "3")

        assert board.planned_ids() == {"u1", "u4"}
        assert board.planned_cntrs() == {"MSCU1000001", "TGHU2000004"}
        assert len(board.all_items()) == 6
        assert board.location_of("u4") == "3"
        assert board.location_of("missing") is None

    def test_board_defaults(self):
        b = PlanningBoard(plan_date=PLAN_DATE)
        assert b.stackers == ("1", "2", "3")
        assert all(b.config_for(s) == StackerConfig() for s in b.stackers)
