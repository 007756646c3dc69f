from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import date, datetime
from typing import Iterable, List, Optional, Set, Union

import pandas as pd

from yard_core import ScheduleItem

NO_DATES_LABEL = "Sem datas"
DEFAULT_SERVICE = "OUTROS"
UNKNOWN_QUADRA_KEY = "??"

DateLike = Union[date, str]


# ----------------------------
# Result records
# ----------------------------

@dataclass(frozen=True, slots=True)
class ServiceStat:
    service: str
    count: int
    removals: int
    first_date: Optional[datetime]
    last_date: Optional[datetime]
    late: int
    on_time: int

    @property
    def date_label(self) -> str:
        return date_range_label(self.first_date, self.last_date)


@dataclass(frozen=True, slots=True)
class QuadraStat:
    quadra: str
    count: int
    removals: int
    first_date: Optional[datetime]
    last_date: Optional[datetime]

    @property
    def date_label(self) -> str:
        return date_range_label(self.first_date, self.last_date)


@dataclass(frozen=True, slots=True)
class ExecutionStats:
    services_done: int = 0
    services_pending: int = 0
    removals_done: int = 0
    removals_pending: int = 0

    @property
    def services_total(self) -> int:
        return self.services_done + self.services_pending

    @property
    def removals_total(self) -> int:
        return self.removals_done + self.removals_pending


@dataclass(frozen=True)
class DashboardSummary:
    total_services: int
    total_removals: int
    services: List[ServiceStat]
    quadras: List[QuadraStat]
    execution: ExecutionStats


# ----------------------------
# Helpers
# ----------------------------

def _fmt_day(d: datetime) -> str:
    return d.strftime("%d/%m/%Y")


def date_range_label(first: Optional[datetime], last: Optional[datetime]) -> str:
    if first is None or last is None:
        return NO_DATES_LABEL
    if first == last:
        return _fmt_day(first)
    return f"{_fmt_day(first)} até {_fmt_day(last)}"


def parse_day(text: str) -> date:
    """`2026-10-18` or day-first `18/10/2026` -> date. ValueError if neither."""
    s = str(text).strip()
    try:
        return date.fromisoformat(s)
    except ValueError:
        pass
    ts = pd.to_datetime(s, errors="coerce", dayfirst=True)
    if pd.isna(ts):
        raise ValueError(f"Not a date: {text!r}")
    return ts.date()


def _as_date(d: DateLike) -> date:
    if isinstance(d, datetime):
        return d.date()
    if isinstance(d, date):
        return d
    return parse_day(d)


def _ts_or_none(v) -> Optional[datetime]:
    if v is None or pd.isna(v):
        return None
    return pd.Timestamp(v).to_pydatetime()


def quadra_key(quadra_full: Optional[str]) -> str:
    label = quadra_full or ""
    if len(label) >= 2:
        return label[:2].upper()
    return label or UNKNOWN_QUADRA_KEY


def filter_by_date(items: Iterable[ScheduleItem], on_date: Optional[DateLike]) -> List[ScheduleItem]:
    """Items scheduled on `on_date` (local calendar day). No date -> everything."""
    items = list(items)
    if on_date is None or on_date == "":
        return items
    day = _as_date(on_date)
    return [it for it in items if it.scheduled_at is not None and it.scheduled_at.date() == day]


def schedule_to_df(items: Iterable[ScheduleItem]) -> pd.DataFrame:
    cols = [f.name for f in fields(ScheduleItem)]
    df = pd.DataFrame([{c: getattr(it, c) for c in cols} for it in items], columns=cols)
    df["removals"] = pd.to_numeric(df["removals"], errors="coerce").fillna(0).astype(int)
    df["scheduled_at"] = pd.to_datetime(df["scheduled_at"], errors="coerce")
    return df


# ----------------------------
# Aggregations
# ----------------------------

def service_stats(items: Iterable[ScheduleItem], *, now: Optional[datetime] = None) -> List[ServiceStat]:
    """
    Per service: count, removals, first/last scheduled date and the late split.

    Late = scheduled strictly before `now`. Items with no date are on time.
    Sorted by removals, largest first (ties keep first-seen order).
    """
    df = schedule_to_df(items)
    if df.empty:
        return []
    now = now or datetime.now()

    df["KEY"] = df["service"].where(df["service"].astype(bool), DEFAULT_SERVICE).fillna(DEFAULT_SERVICE)
    df["LATE"] = (df["scheduled_at"].notna() & (df["scheduled_at"] < pd.Timestamp(now))).astype(int)

    agg = df.groupby("KEY", sort=False, as_index=False).agg(
        COUNT=("item_id", "size"),
        REMOVALS=("removals", "sum"),
        FIRST=("scheduled_at", "min"),
        LAST=("scheduled_at", "max"),
        LATE=("LATE", "sum"),
    )
    agg = agg.sort_values("REMOVALS", ascending=False, kind="stable")

    return [
        ServiceStat(
            service=str(r.KEY),
            count=int(r.COUNT),
            removals=int(r.REMOVALS),
            first_date=_ts_or_none(r.FIRST),
            last_date=_ts_or_none(r.LAST),
            late=int(r.LATE),
            on_time=int(r.COUNT) - int(r.LATE),
        )
        for r in agg.itertuples(index=False)
    ]


def quadra_stats(items: Iterable[ScheduleItem]) -> List[QuadraStat]:
    df = schedule_to_df(items)
    if df.empty:
        return []

    df["KEY"] = df["quadra_full"].map(quadra_key)
    agg = df.groupby("KEY", sort=False, as_index=False).agg(
        COUNT=("item_id", "size"),
        REMOVALS=("removals", "sum"),
        FIRST=("scheduled_at", "min"),
        LAST=("scheduled_at", "max"),
    )
    agg = agg.sort_values("REMOVALS", ascending=False, kind="stable")

    return [
        QuadraStat(
            quadra=str(r.KEY),
            count=int(r.COUNT),
            removals=int(r.REMOVALS),
            first_date=_ts_or_none(r.FIRST),
            last_date=_ts_or_none(r.LAST),
        )
        for r in agg.itertuples(index=False)
    ]


def execution_stats(items: Iterable[ScheduleItem], completed: Iterable[str]) -> ExecutionStats:
    done_ids = set(completed)
    s_done = s_pend = r_done = r_pend = 0
    for it in items:
        rem = int(it.removals or 0)
        if it.item_id in done_ids:
            s_done += 1
            r_done += rem
        else:
            s_pend += 1
            r_pend += rem
    return ExecutionStats(
        services_done=s_done,
        services_pending=s_pend,
        removals_done=r_done,
        removals_pending=r_pend,
    )


def summarize(
    items: Iterable[ScheduleItem],
    completed: Iterable[str] = (),
    *,
    on_date: Optional[DateLike] = None,
    now: Optional[datetime] = None,
) -> DashboardSummary:
    filtered = filter_by_date(items, on_date)
    return DashboardSummary(
        total_services=len(filtered),
        total_removals=sum(int(it.removals or 0) for it in filtered),
        services=service_stats(filtered, now=now),
        quadras=quadra_stats(filtered),
        execution=execution_stats(filtered, completed),
    )


def stats_to_df(stats: Iterable[Union[ServiceStat, QuadraStat]]) -> pd.DataFrame:
    rows = []
    for s in stats:
        row = {f.name.upper(): getattr(s, f.name) for f in fields(s)}
        row["DATE_LABEL"] = s.date_label
        rows.append(row)
    return pd.DataFrame(rows)


# ----------------------------
# Schedule listing
# ----------------------------

SORTABLE_FIELDS = {f.name for f in fields(ScheduleItem)}


def filter_schedule(
    items: Iterable[ScheduleItem],
    *,
    importer: Optional[str] = None,
    service: Optional[str] = None,
    doc_type: Optional[str] = None,
    quadra: str = "",
    search: str = "",
    on_date: Optional[DateLike] = None,
) -> List[ScheduleItem]:
    """`None` (or 'all') on a dropdown field means no filter on it."""
    def _pick(v: Optional[str]) -> Optional[str]:
        return None if v in (None, "", "all") else v

    importer, service, doc_type = _pick(importer), _pick(service), _pick(doc_type)
    quadra = (quadra or "").lower()
    search = (search or "").lower()

    out = []
    for it in filter_by_date(items, on_date):
        if importer is not None and it.importer != importer:
            continue
        if service is not None and it.service != service:
            continue
        if doc_type is not None and it.doc_type != doc_type:
            continue
        if search not in it.cntr.lower():
            continue
        if quadra not in (it.quadra_full or "").lower():
            continue
        out.append(it)
    return out


def sort_schedule(
    items: Iterable[ScheduleItem],
    key: str = "scheduled_label",
    *,
    descending: bool = False,
) -> List[ScheduleItem]:
    """
    Sort by any ScheduleItem field. The date columns sort by timestamp,
    undated items count as the epoch (they lead an ascending sort).
    """
    if key not in SORTABLE_FIELDS:
        raise KeyError(f"Cannot sort by {key!r}")

    if key in ("scheduled_label", "scheduled_at"):
        def sort_key(it: ScheduleItem):
            return it.scheduled_at.timestamp() if it.scheduled_at is not None else 0.0
    else:
        def sort_key(it: ScheduleItem):
            return getattr(it, key)

    return sorted(items, key=sort_key, reverse=descending)


def filter_options(items: Iterable[ScheduleItem]) -> dict[str, List[str]]:
    items = list(items)
    return {
        "importers": sorted({it.importer for it in items}),
        "services": sorted({it.service for it in items}),
        "doc_types": sorted({it.doc_type for it in items}),
    }


def toggle_completed(completed: Set[str], item_id: str) -> Set[str]:
    """New set with `item_id` flipped; the input is left untouched."""
    out = set(completed)
    if item_id in out:
        out.discard(item_id)
    else:
        out.add(item_id)
    return out
