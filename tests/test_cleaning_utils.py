"""
Tests for the schedule / stock feed cleaning and the reconciliation join.
"""

import logging
from datetime import date, datetime

import pandas as pd
import pytest

from cleaning_utils import (
    IngestConfig,
    clean_schedule_frame,
    clean_stock_frame,
    coerce_schedule_date,
    duplicate_cntrs,
    load_schedule,
    load_stock,
    pick_schedule_sheet,
    reconcile_stock,
    schedule_from_rows,
    schedule_label,
)

from conftest import header_rows, sched, schedule_row, stock_row


@pytest.fixture
def raw_schedule():
    return pd.DataFrame(header_rows(19, 2) + [
        schedule_row("mscu 100000-1", removals="3 mov", when=46313.5),
        schedule_row(None, removals=9),
        schedule_row("TGHU2000003", importer=None, doc=None, quadra=None, service=None, removals=None),
        schedule_row("CAIU3000005", service="EXPORTACAO", removals=2.0, when="18/10/2026 07:30"),
    ])


@pytest.fixture
def raw_stock():
    return pd.DataFrame(header_rows(18, 1) + [
        stock_row("MSCU 100000-1", "A101B2"),
        stock_row("tghu2000003", " A102A1 "),
        stock_row("CAIU3000005", "B210F6", terminal="OUTRO"),
        stock_row("ZZZU9999999", "C305D4"),
        stock_row("XXXU0000000", None),
    ])


class TestCellCoercion:
    """Tests for coerce_schedule_date() / schedule_label()."""

    def test_excel_serial(self):
        d = coerce_schedule_date(46313.5)
        assert d == datetime(2026, 10, 18, 12, 0)
        assert schedule_label(d) == "18/10 12:00"

    def test_other_forms(self):
        assert coerce_schedule_date(date(2026, 1, 2)) == datetime(2026, 1, 2)
        assert coerce_schedule_date("02/01/2026 09:15") == datetime(2026, 1, 2, 9, 15)
        assert coerce_schedule_date(None) is None
        assert coerce_schedule_date("") is None
        assert coerce_schedule_date("not a date") is None
        assert schedule_label(None) == "S/D"


class TestScheduleFeed:
    """Tests for clean_schedule_frame() / schedule_from_rows()."""

    def test_positional_columns(self, raw_schedule):
        df = clean_schedule_frame(raw_schedule)

        assert len(df) == 3
        first = df.iloc[0]
        assert first["ITEM_ID"] == "mscu 100000-1_0"
        assert first["CNTR"] == "MSCU1000001"
        assert first["IMPORTER"] == "ACME"
        assert first["REMOVALS"] == 3
        assert first["SCHEDULED_LABEL"] == "18/10 12:00"

    def test_defaults_for_blank_cells(self, raw_schedule):
        items = schedule_from_rows(clean_schedule_frame(raw_schedule).to_dict("records"))
        blank = items[1]

        assert blank.cntr == "TGHU2000003"
        assert blank.item_id == "TGHU2000003_2"
        assert (blank.importer, blank.doc_type, blank.quadra_full, blank.service) == ("DIVERSOS", "-", "?", "OUTROS")
        assert blank.removals == 0
        assert blank.scheduled_at is None
        assert blank.scheduled_label == "S/D"

    def test_text_dates_and_float_removals(self, raw_schedule):
        items = schedule_from_rows(clean_schedule_frame(raw_schedule).to_dict("records"))
        assert items[2].scheduled_at == datetime(2026, 10, 18, 7, 30)
        assert items[2].removals == 2

    def test_header_only_sheet(self):
        df = clean_schedule_frame(pd.DataFrame(header_rows(19, 2)))
        assert df.empty
        assert schedule_from_rows(df.to_dict("records")) == []

    def test_pick_schedule_sheet(self):
        assert pick_schedule_sheet(["Resumo", "PLANILHA GERAL 10"], "PLANILHA GERAL") == "PLANILHA GERAL 10"
        assert pick_schedule_sheet(["Plan1", "Plan2"], "PLANILHA GERAL") == "Plan1"


class TestReconcile:
    """Tests for clean_stock_frame() / reconcile_stock()."""

    def test_join_by_normalized_code(self, raw_schedule, raw_stock):
        schedule = schedule_from_rows(clean_schedule_frame(raw_schedule).to_dict("records"))
        rows = clean_stock_frame(raw_stock).to_dict("records")

        stock = reconcile_stock(schedule, rows, terminal="CLIA")

        assert [it.item_id for it in stock] == ["0_MSCU1000001", "1_TGHU2000003", "3_ZZZU9999999"]
        assert stock[0].service == "IMPORTACAO"
        assert stock[0].quadra_base == "A1-01"
        assert stock[1].location == "A102A1"
        assert stock[1].service == "OUTROS"
        assert stock[2].service == "Sem Agendamento"
        assert stock[2].quadra_base == "N/I"

    def test_without_terminal_filter(self, raw_schedule, raw_stock):
        rows = clean_stock_frame(raw_stock).to_dict("records")
        stock = reconcile_stock([], rows)
        assert len(stock) == 4

    def test_last_schedule_row_wins(self, caplog):
        schedule = [
            sched("a", "MSCU1000001", service="IMPORTACAO", quadra="A1"),
            sched("b", "MSCU1000001", service="EXPORTACAO", quadra="B2"),
        ]
        rows = [{"ROW": 0, "CNTR": "mscu1000001", "LOCATION": "A101B2", "TERMINAL": "CLIA"}]

        with caplog.at_level(logging.WARNING, logger="cleaning_utils"):
            stock = reconcile_stock(schedule, rows)

        assert stock[0].service == "EXPORTACAO"
        assert stock[0].quadra_base == "B2"
        assert duplicate_cntrs(schedule) == {"MSCU1000001": 2}
        assert "several schedule rows" in caplog.text


class TestWorkbooks:
    """Reading both feeds back from real .xlsx files."""

    def test_load_schedule_and_stock(self, tmp_path, raw_schedule, raw_stock):
        sched_path = tmp_path / "agendamento.xlsx"
        stock_path = tmp_path / "estoque.xlsx"

        with pd.ExcelWriter(sched_path, engine="openpyxl") as xw:
            pd.DataFrame([["resumo"]]).to_excel(xw, sheet_name="Resumo", header=False, index=False)
            raw_schedule.to_excel(xw, sheet_name="PLANILHA GERAL", header=False, index=False)
        raw_stock.to_excel(stock_path, header=False, index=False, engine="openpyxl")

        schedule = load_schedule(sched_path)
        assert [s.cntr for s in schedule] == ["MSCU1000001", "TGHU2000003", "CAIU3000005"]
        assert schedule[0].scheduled_at == datetime(2026, 10, 18, 12, 0)
        assert schedule[0].removals == 3

        stock = load_stock(stock_path, schedule, IngestConfig(terminal="CLIA"))
        assert [it.cntr for it in stock] == ["MSCU1000001", "TGHU2000003", "ZZZU9999999"]
        assert stock[0].bay == "A101"
