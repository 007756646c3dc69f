from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Iterable, List, Mapping, Optional
import logging
import numbers
import re

import pandas as pd

from yard_core import (
    UNKNOWN_QUADRA,
    UNSCHEDULED_SERVICE,
    ScheduleItem,
    StockItem,
    normalize_cntr,
)

logger = logging.getLogger(__name__)

# NOTE: This module is the input normalization layer for the two yard feeds.
# Planning and layout logic stay out of here.

EXCEL_EPOCH = pd.Timestamp("1899-12-30")


@dataclass(frozen=True)
class IngestConfig:
    """Sheet layout of the two feeds (0-based column positions)."""
    schedule_sheet_hint: str = "PLANILHA GERAL"
    schedule_skip_rows: int = 2
    col_importer: int = 0
    col_sched_cntr: int = 3
    col_doc_type: int = 7
    col_quadra: int = 8
    col_service: int = 9
    col_removals: int = 12
    col_scheduled: int = 18

    stock_skip_rows: int = 1
    col_stock_cntr: int = 2
    col_terminal: int = 16
    col_location: int = 17
    terminal: str = "CLIA"


# ----------------------------
# Cell helpers
# ----------------------------

def _is_blank(v: Any) -> bool:
    if v is None:
        return True
    try:
        if pd.isna(v):
            return True
    except (TypeError, ValueError):
        return False
    return str(v).strip() == ""


def _cell_text(v: Any, default: str = "") -> str:
    if _is_blank(v):
        return default
    s = str(v).strip()
    # integral numeric cells come back from Excel as floats
    return re.sub(r"\.0$", "", s) if isinstance(v, float) else s


def _leading_int(v: Any) -> int:
    if _is_blank(v):
        return 0
    if isinstance(v, numbers.Real) and not isinstance(v, bool):
        try:
            return max(0, int(v))
        except (OverflowError, ValueError):
            return 0
    m = re.match(r"\s*[+-]?\d+", str(v))
    return max(0, int(m.group(0))) if m else 0


def coerce_schedule_date(v: Any) -> Optional[datetime]:
    """Excel serial number, datetime or date text -> naive datetime (None if unusable)."""
    if _is_blank(v):
        return None
    if isinstance(v, bool):
        return None
    if isinstance(v, numbers.Real):
        if v == 0:
            return None
        ts = EXCEL_EPOCH + pd.to_timedelta(float(v), unit="D")
        return ts.round("s").to_pydatetime()
    if isinstance(v, (datetime, date)):
        return pd.Timestamp(v).to_pydatetime()
    ts = pd.to_datetime(str(v).strip(), errors="coerce", dayfirst=True)
    if pd.isna(ts):
        return None
    return ts.to_pydatetime()


def schedule_label(d: Optional[datetime]) -> str:
    return "S/D" if _is_blank(d) else d.strftime("%d/%m %H:%M")


def _col(df: pd.DataFrame, idx: int) -> pd.Series:
    if idx in df.columns:
        return df[idx]
    return pd.Series([None] * len(df), index=df.index, dtype=object)


def _field(row: Any, name: str, default: Any = None) -> Any:
    if isinstance(row, Mapping):
        return row.get(name, default)
    return getattr(row, name, default)


# ----------------------------
# Schedule feed
# ----------------------------

SCHEDULE_COLUMNS = [
    "ITEM_ID", "IMPORTER", "CNTR", "DOC_TYPE", "QUADRA",
    "SERVICE", "REMOVALS", "SCHEDULED_AT", "SCHEDULED_LABEL",
]
STOCK_COLUMNS = ["ROW", "CNTR", "LOCATION", "TERMINAL"]


def clean_schedule_frame(raw: pd.DataFrame, cfg: IngestConfig = IngestConfig()) -> pd.DataFrame:
    """
    Positional schedule sheet (read with header=None) -> one row per movement.

    Columns: ITEM_ID, IMPORTER, CNTR, DOC_TYPE, QUADRA, SERVICE, REMOVALS,
    SCHEDULED_AT, SCHEDULED_LABEL. Rows without a container are dropped.
    """
    body = raw.iloc[cfg.schedule_skip_rows:].reset_index(drop=True)
    if body.empty:
        return pd.DataFrame(columns=SCHEDULE_COLUMNS)

    raw_cntr = [_cell_text(v) for v in _col(body, cfg.col_sched_cntr)]
    when = [coerce_schedule_date(v) for v in _col(body, cfg.col_scheduled)]

    data = pd.DataFrame({
        "ITEM_ID": [f"{c}_{i}" for i, c in enumerate(raw_cntr)],
        "IMPORTER": [_cell_text(v, "DIVERSOS") for v in _col(body, cfg.col_importer)],
        "CNTR": [normalize_cntr(c) for c in raw_cntr],
        "RAW_CNTR": raw_cntr,
        "DOC_TYPE": [_cell_text(v, "-") for v in _col(body, cfg.col_doc_type)],
        "QUADRA": [_cell_text(v, "?") for v in _col(body, cfg.col_quadra)],
        "SERVICE": [_cell_text(v, "OUTROS") for v in _col(body, cfg.col_service)],
        "REMOVALS": [_leading_int(v) for v in _col(body, cfg.col_removals)],
        "SCHEDULED_AT": pd.Series(when, dtype=object),
        "SCHEDULED_LABEL": [schedule_label(d) for d in when],
    })

    data = data[data["RAW_CNTR"] != ""].drop(columns=["RAW_CNTR"])
    return data.reset_index(drop=True)


def schedule_from_rows(rows) -> List[ScheduleItem]:
    items: List[ScheduleItem] = []
    for r in rows:
        when = _field(r, "SCHEDULED_AT")
        items.append(ScheduleItem(
            item_id=str(_field(r, "ITEM_ID")),
            cntr=normalize_cntr(_field(r, "CNTR")),
            importer=str(_field(r, "IMPORTER", "DIVERSOS")),
            doc_type=str(_field(r, "DOC_TYPE", "-")),
            quadra_full=str(_field(r, "QUADRA", "?")),
            service=str(_field(r, "SERVICE", "OUTROS")),
            removals=int(_field(r, "REMOVALS", 0) or 0),
            scheduled_at=None if _is_blank(when) else pd.Timestamp(when).to_pydatetime(),
            scheduled_label=str(_field(r, "SCHEDULED_LABEL", "S/D")),
        ))
    return items


def pick_schedule_sheet(sheet_names: List[str], hint: str) -> str:
    return next((n for n in sheet_names if hint in n), sheet_names[0])


def load_schedule(xlsx_path, cfg: IngestConfig = IngestConfig()) -> List[ScheduleItem]:
    with pd.ExcelFile(xlsx_path) as xl:
        sheet = pick_schedule_sheet(list(xl.sheet_names), cfg.schedule_sheet_hint)
        raw = xl.parse(sheet, header=None)
    data = clean_schedule_frame(raw, cfg)
    items = schedule_from_rows(data.to_dict("records"))
    logger.info("Loaded %d schedule rows from %s [%s]", len(items), xlsx_path, sheet)
    return items


# ----------------------------
# Stock feed + reconciliation
# ----------------------------

def clean_stock_frame(raw: pd.DataFrame, cfg: IngestConfig = IngestConfig()) -> pd.DataFrame:
    """Positional stock sheet -> ROW, CNTR, LOCATION, TERMINAL (no rows dropped yet)."""
    body = raw.iloc[cfg.stock_skip_rows:].reset_index(drop=True)
    if body.empty:
        return pd.DataFrame(columns=STOCK_COLUMNS)
    return pd.DataFrame({
        "ROW": list(range(len(body))),
        "CNTR": [_cell_text(v) for v in _col(body, cfg.col_stock_cntr)],
        "LOCATION": [_cell_text(v) for v in _col(body, cfg.col_location)],
        "TERMINAL": [_cell_text(v) for v in _col(body, cfg.col_terminal)],
    })


def duplicate_cntrs(schedule: Iterable[ScheduleItem]) -> dict[str, int]:
    """Normalized codes that appear on more than one schedule row."""
    counts = Counter(s.cntr for s in schedule if s.cntr)
    return {c: n for c, n in counts.items() if n > 1}


def reconcile_stock(
    schedule: Iterable[ScheduleItem],
    rows,
    *,
    terminal: Optional[str] = None,
) -> List[StockItem]:
    """
    Join stock rows to the schedule by normalized container code.

    The last schedule row seen for a code wins. Unmatched units get the
    unscheduled sentinels. Rows from another terminal (when `terminal` is
    given) or without location / container are skipped.
    """
    schedule = list(schedule)
    by_cntr = {s.cntr: s for s in schedule}

    dups = duplicate_cntrs(schedule)
    if dups:
        logger.warning(
            "%d container codes appear on several schedule rows; keeping the last row for each",
            len(dups),
        )

    out: List[StockItem] = []
    skipped = 0
    for pos, r in enumerate(rows):
        if terminal is not None and _cell_text(_field(r, "TERMINAL")) != terminal:
            skipped += 1
            continue

        location = _cell_text(_field(r, "LOCATION"))
        cntr = normalize_cntr(_field(r, "CNTR"))
        if not location or not cntr:
            skipped += 1
            continue

        row_no = _field(r, "ROW", pos)
        match = by_cntr.get(cntr)
        out.append(StockItem.from_location(
            f"{row_no}_{cntr}",
            cntr,
            location,
            service=match.service if match else UNSCHEDULED_SERVICE,
            quadra_base=match.quadra_full if match else UNKNOWN_QUADRA,
        ))

    matched = sum(1 for it in out if it.service != UNSCHEDULED_SERVICE)
    logger.info("Reconciled %d stock units (%d scheduled, %d rows skipped)", len(out), matched, skipped)
    return out


def load_stock(
    xlsx_path,
    schedule: Iterable[ScheduleItem],
    cfg: IngestConfig = IngestConfig(),
) -> List[StockItem]:
    raw = pd.read_excel(xlsx_path, header=None)
    data = clean_stock_frame(raw, cfg)
    return reconcile_stock(schedule, data.to_dict("records"), terminal=cfg.terminal)
