"""
Pytest fixtures for yard planner tests.
"""

from datetime import date, datetime

import matplotlib

matplotlib.use("Agg")

import pytest

from yard_core import PlanningBoard, ScheduleItem, StockItem


PLAN_DATE = date(2026, 10, 18)


def sched(item_id, cntr, *, service="IMPORTACAO", quadra="A1-01", removals=1, at=None, importer="ACME", doc="DI"):
    return ScheduleItem(
        item_id=item_id,
        cntr=cntr,
        importer=importer,
        doc_type=doc,
        quadra_full=quadra,
        service=service,
        removals=removals,
        scheduled_at=at,
        scheduled_label=at.strftime("%d/%m %H:%M") if at else "S/D",
    )


def unit(item_id, location, *, cntr=None, service="IMPORTACAO"):
    return StockItem.from_location(item_id, cntr or f"CNTR{item_id}", location, service=service)


@pytest.fixture
def now():
    return datetime(2026, 10, 18, 12, 0)


@pytest.fixture
def schedule_items():
    """Four schedule rows over three services and three quadras."""
    return [
        sched("s1", "MSCU1000001", service="IMPORT", quadra="A1-01", removals=3, at=datetime(2026, 10, 17, 10, 0)),
        sched("s2", "MSCU1000002", service="IMPORT", quadra="a1x", removals=2, at=datetime(2026, 10, 19, 9, 0)),
        sched("s3", "MSCU1000003", service="EXPORT", quadra="B", removals=5),
        sched("s4", "MSCU1000004", service="", quadra="", removals=1, at=datetime(2026, 10, 18, 8, 0)),
    ]


@pytest.fixture
def stock_items():
    """Six units over three bays of two quadras."""
    return [
        unit("u1", "A101B2", cntr="MSCU1000001"),
        unit("u2", "A101B3", cntr="MSCU1000002"),
        unit("u3", "A101C1", cntr="TGHU2000003", service="EXPORTACAO"),
        unit("u4", "A102A1", cntr="TGHU2000004"),
        unit("u5", "B210F6", cntr="CAIU3000005", service="Sem Agendamento"),
        unit("u6", "B210F5", cntr="CAIU3000006", service="Sem Agendamento"),
    ]


@pytest.fixture
def board(stock_items):
    """Board with the six units in stock and 3 stackers at 08:00 / 15 mph."""
    return PlanningBoard.from_stock(stock_items, plan_date=PLAN_DATE)


def schedule_row(cntr, *, importer="ACME", doc="DI", quadra="A1-01", service="IMPORTACAO", removals=1, when=None):
    """One positional schedule sheet row (19 columns)."""
    row = [None] * 19
    row[0] = importer
    row[3] = cntr
    row[7] = doc
    row[8] = quadra
    row[9] = service
    row[12] = removals
    row[18] = when
    return row


def stock_row(cntr, location, terminal="CLIA"):
    row = [None] * 18
    row[2] = cntr
    row[16] = terminal
    row[17] = location
    return row


def header_rows(width, n):
    return [[f"h{c}" for c in range(width)] for _ in range(n)]
