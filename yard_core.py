from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import (
    Any,
    Dict,
    Iterable,
    List,
    NamedTuple,
    Optional,
    Tuple,
    Union,
)
import logging
import re
import threading

import pandas as pd

logger = logging.getLogger(__name__)


# ----------------------------
# Types / Exceptions
# ----------------------------

StackerId = str

DEFAULT_STACKERS: Tuple[StackerId, ...] = ("1", "2", "3")

UNSCHEDULED_SERVICE = "Sem Agendamento"
UNKNOWN_QUADRA = "N/I"

ROWS_PER_BAY = 6
TIERS_PER_ROW = 6


class YardError(Exception):
    pass


class UnknownStackerError(YardError):
    pass


class PlanInvariantError(YardError):
    pass


class EmptyPlanError(YardError):
    pass


# ----------------------------
# Identity + position decoding
# ----------------------------

def normalize_cntr(value: object) -> str:
    """Canonical container code: uppercase, only [A-Z0-9] kept."""
    if value is None:
        return ""
    try:
        if pd.isna(value):
            return ""
    except (TypeError, ValueError):
        pass
    return re.sub(r"[^A-Z0-9]", "", str(value).upper())


class YardCoordinate(NamedTuple):
    row: int   # 0 = A ... 5 = F
    tier: int  # 1 = ground ... 6 = top


DEFAULT_COORDINATE = YardCoordinate(row=0, tier=1)


def _clamp(v: int, lo: int, hi: int) -> int:
    return max(lo, min(hi, v))


def _leading_int(s: str) -> Optional[int]:
    m = re.match(r"\s*[+-]?[0-9]+", s)
    return int(m.group(0)) if m else None


def parse_position(location: Optional[str]) -> YardCoordinate:
    """
    Decode the (row, tier) slot from the last two chars of a location code.

    Last char is the tier (1-6), second to last the row (A-F, or 1-6 as a
    numeric fallback). Anything unparseable falls back to row A / tier 1 and
    everything is clamped, so this never raises.
    """
    if not location or len(location) < 2:
        return DEFAULT_COORDINATE

    tier = _leading_int(location[-1])
    if tier is None:
        tier = 1

    row_char = location[-2].upper()[:1]  # "ß".upper() is "SS"
    if "A" <= row_char <= "Z":
        row = ord(row_char) - ord("A")
    else:
        num = _leading_int(row_char)
        row = num - 1 if num is not None and num > 0 else 0

    return YardCoordinate(
        row=_clamp(row, 0, ROWS_PER_BAY - 1),
        tier=_clamp(tier, 1, TIERS_PER_ROW),
    )


# ----------------------------
# Entities
# ----------------------------

@dataclass(frozen=True, slots=True)
class ScheduleItem:
    item_id: str
    cntr: str
    importer: str = "DIVERSOS"
    doc_type: str = "-"
    quadra_full: str = "?"
    service: str = "OUTROS"
    removals: int = 0
    scheduled_at: Optional[datetime] = None
    scheduled_label: str = "S/D"


@dataclass(frozen=True, slots=True)
class StockItem:
    """
    A unit on the ground (or already queued on a stacker).

    quadra / bay / pos are computed once from `location`:
      - quadra = first 2 chars
      - bay    = first 4 chars
      - pos    = last 2 chars
    """
    item_id: str
    cntr: str
    location: str
    quadra: str
    bay: str
    pos: str
    service: str = UNSCHEDULED_SERVICE
    quadra_base: str = UNKNOWN_QUADRA

    @classmethod
    def from_location(
        cls,
        item_id: str,
        cntr: str,
        location: str,
        *,
        service: str = UNSCHEDULED_SERVICE,
        quadra_base: str = UNKNOWN_QUADRA,
    ) -> "StockItem":
        location = str(location)
        return cls(
            item_id=str(item_id),
            cntr=normalize_cntr(cntr),
            location=location,
            quadra=location[:2],
            bay=location[:4],
            pos=location[-2:],
            service=service,
            quadra_base=quadra_base,
        )

    @property
    def coordinate(self) -> YardCoordinate:
        return parse_position(self.location)


# ----------------------------
# Stacker configuration + clock
# ----------------------------

DEFAULT_START = time(8, 0)
DEFAULT_MPH = 15
MIN_MPH = 1


def _parse_hhmm(v: object) -> Optional[time]:
    if isinstance(v, time):
        return v.replace(second=0, microsecond=0)
    m = re.fullmatch(r"\s*(\d{1,2}):(\d{2})(?::\d{2})?\s*", str(v or ""))
    if not m:
        return None
    hh, mm = int(m.group(1)), int(m.group(2))
    if hh > 23 or mm > 59:
        return None
    return time(hh, mm)


@dataclass(frozen=True, slots=True)
class StackerConfig:
    start: time = DEFAULT_START
    mph: int = DEFAULT_MPH  # movements per hour

    @classmethod
    def parse(cls, start: object = None, mph: object = None) -> "StackerConfig":
        """
        Build a config from raw user/storage values.

        A rate that is not a positive integer becomes MIN_MPH; a start that is
        not HH:MM becomes DEFAULT_START. Both are logged, neither raises.
        """
        st = DEFAULT_START if start is None else _parse_hhmm(start)
        if st is None:
            logger.warning("Invalid stacker start %r; using %s", start, DEFAULT_START.strftime("%H:%M"))
            st = DEFAULT_START

        if mph is None:
            rate = DEFAULT_MPH
        else:
            try:
                rate = int(float(mph))
            except (TypeError, ValueError, OverflowError):
                rate = 0
            if rate < MIN_MPH:
                logger.warning("Invalid stacker rate %r; using %d mph", mph, MIN_MPH)
                rate = MIN_MPH

        return cls(start=st, mph=rate)

    @property
    def start_label(self) -> str:
        return self.start.strftime("%H:%M")

    @property
    def minutes_per_move(self) -> float:
        return 60.0 / float(max(MIN_MPH, self.mph))

    def to_dict(self) -> dict[str, Any]:
        return {"start": self.start_label, "mph": int(self.mph)}


@dataclass
class MoveClock:
    """Constant move rate: time = moves / rate."""
    rate_mph: float

    def consume(self, cur: datetime, moves: float) -> datetime:
        if moves <= 0:
            return cur
        if self.rate_mph <= 0:
            raise ValueError("rate_mph must be > 0")
        return cur + timedelta(minutes=float(moves) * 60.0 / float(self.rate_mph))


def duration_label(minutes: float) -> str:
    """`95` -> `'1h 35m'`."""
    minutes = max(0.0, float(minutes))
    hours = int(minutes // 60)
    rest = int(round(minutes % 60))
    if rest == 60:
        hours, rest = hours + 1, 0
    return f"{hours}h {rest}m"


# ----------------------------
# Planning board
# ----------------------------

class BayLoad(NamedTuple):
    bay: str
    moves: int
    minutes: float


@dataclass(frozen=True, slots=True)
class PlanRow:
    seq: int
    eta: datetime
    cntr: str
    service: str
    location: str
    quadra: str

    @property
    def eta_label(self) -> str:
        return self.eta.strftime("%H:%M")


ItemRef = Union[StockItem, str]


def _ref_id(ref: ItemRef) -> str:
    return ref.item_id if isinstance(ref, StockItem) else str(ref)


@dataclass
class PlanningBoard:
    """
    Authoritative owner of the stock pool and the stacker queues.

    Key invariant (no duplication, no loss):
      - every item id is either in the pool or in exactly one queue
    All mutations run under a single lock so no caller can observe an item
    in two places (or in none) between the two halves of a move.
    """
    stackers: Tuple[StackerId, ...] = DEFAULT_STACKERS
    plan_date: date = field(default_factory=date.today)
    _pool: Dict[str, StockItem] = field(default_factory=dict)
    _queues: Dict[StackerId, List[StockItem]] = field(default_factory=dict)
    _configs: Dict[StackerId, StackerConfig] = field(default_factory=dict)
    _lock: Any = field(default_factory=threading.RLock, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.stackers = tuple(str(s) for s in self.stackers)
        for sid in self.stackers:
            self._queues.setdefault(sid, [])
            self._configs.setdefault(sid, StackerConfig())

    @classmethod
    def from_stock(
        cls,
        stock: Iterable[StockItem],
        *,
        stackers: Iterable[StackerId] = DEFAULT_STACKERS,
        configs: Optional[Dict[StackerId, StackerConfig]] = None,
        plan_date: Optional[date] = None,
    ) -> "PlanningBoard":
        board = cls(stackers=tuple(stackers), plan_date=plan_date or date.today())
        board.load_stock(stock)
        for sid, cfg in (configs or {}).items():
            if str(sid) in board._queues:
                board._configs[str(sid)] = cfg
        return board

    # ---- stock pool -------------------------------------------------

    def load_stock(self, stock: Iterable[StockItem]) -> None:
        """Replace the pool with a fresh snapshot and empty every queue."""
        with self._lock:
            pool: Dict[str, StockItem] = {}
            skipped = 0
            for item in stock:
                if item.item_id in pool:
                    skipped += 1
                    continue
                pool[item.item_id] = item
            if skipped:
                logger.warning("Ignored %d stock rows with a repeated id", skipped)
            self._pool = pool
            for sid in self.stackers:
                self._queues[sid] = []
            logger.info("Stock pool loaded with %d units", len(pool))

    def pool(self) -> List[StockItem]:
        with self._lock:
            return list(self._pool.values())

    def filter_pool(self, term: str = "") -> List[StockItem]:
        term = (term or "").strip().upper()
        items = self.pool()
        if not term:
            return items
        return [
            it for it in items
            if term in it.cntr or (it.service and term in it.service.upper())
        ]

    def all_items(self) -> List[StockItem]:
        """Pool plus every queue (pool first, then stackers in order)."""
        with self._lock:
            out = list(self._pool.values())
            for sid in self.stackers:
                out.extend(self._queues[sid])
            return out

    # ---- queues -----------------------------------------------------

    def _queue(self, stacker_id: StackerId) -> List[StockItem]:
        q = self._queues.get(str(stacker_id))
        if q is None:
            raise UnknownStackerError(
                f"Unknown stacker {stacker_id!r}; expected one of {', '.join(self.stackers)}."
            )
        return q

    def queue(self, stacker_id: StackerId) -> List[StockItem]:
        with self._lock:
            return list(self._queue(stacker_id))

    def assign(self, items: Iterable[ItemRef], stacker_id: StackerId) -> List[StockItem]:
        """
        Move pool members onto the end of a stacker queue, in the given order.

        Refs that are not currently in the pool are skipped. Returns the items
        actually moved.
        """
        with self._lock:
            q = self._queue(stacker_id)
            moved: List[StockItem] = []
            for ref in items:
                item = self._pool.pop(_ref_id(ref), None)
                if item is None:
                    continue
                q.append(item)
                moved.append(item)
            if moved:
                logger.info("Assigned %d units to stacker %s", len(moved), stacker_id)
            return moved

    def unassign(self, item_id: str, stacker_id: StackerId) -> Optional[StockItem]:
        with self._lock:
            q = self._queue(stacker_id)
            for i, item in enumerate(q):
                if item.item_id == str(item_id):
                    del q[i]
                    self._pool[item.item_id] = item
                    logger.info("Returned %s from stacker %s to stock", item.cntr, stacker_id)
                    return item
            return None

    def clear_queue(self, stacker_id: StackerId) -> List[StockItem]:
        with self._lock:
            q = self._queue(stacker_id)
            returned = list(q)
            q.clear()
            for item in returned:
                self._pool[item.item_id] = item
            if returned:
                logger.info("Cleared stacker %s (%d units back to stock)", stacker_id, len(returned))
            return returned

    def location_of(self, item_id: str) -> Optional[str]:
        """'pool', a stacker id, or None if the id was never loaded."""
        with self._lock:
            if str(item_id) in self._pool:
                return "pool"
            for sid in self.stackers:
                if any(it.item_id == str(item_id) for it in self._queues[sid]):
                    return sid
            return None

    def planned_ids(self) -> set[str]:
        with self._lock:
            return {it.item_id for sid in self.stackers for it in self._queues[sid]}

    def planned_cntrs(self) -> set[str]:
        with self._lock:
            return {it.cntr for sid in self.stackers for it in self._queues[sid]}

    def validate(self) -> None:
        with self._lock:
            seen: Dict[str, str] = {iid: "pool" for iid in self._pool}
            for sid in self.stackers:
                for item in self._queues[sid]:
                    prev = seen.get(item.item_id)
                    if prev is not None:
                        raise PlanInvariantError(
                            f"Item {item.item_id} is both in {prev} and stacker {sid}."
                        )
                    seen[item.item_id] = sid

    # ---- configuration ----------------------------------------------

    def config_for(self, stacker_id: StackerId) -> StackerConfig:
        with self._lock:
            self._queue(stacker_id)
            return self._configs[str(stacker_id)]

    def configs(self) -> Dict[StackerId, StackerConfig]:
        with self._lock:
            return dict(self._configs)

    def configure(self, stacker_id: StackerId, *, start: object = None, mph: object = None) -> StackerConfig:
        with self._lock:
            cur = self.config_for(stacker_id)
            cfg = StackerConfig.parse(
                cur.start if start is None else start,
                cur.mph if mph is None else mph,
            )
            self._configs[str(stacker_id)] = cfg
            return cfg

    # ---- timing -----------------------------------------------------

    def _start_dt(self, cfg: StackerConfig) -> datetime:
        return datetime.combine(self.plan_date, cfg.start)

    def estimate_time(self, stacker_id: StackerId, index: int) -> datetime:
        cfg = self.config_for(stacker_id)
        clock = MoveClock(rate_mph=float(max(MIN_MPH, cfg.mph)))
        return clock.consume(self._start_dt(cfg), max(0, int(index)))

    def eta_label(self, stacker_id: StackerId, index: int) -> str:
        return self.estimate_time(stacker_id, index).strftime("%H:%M")

    def total_minutes(self, stacker_id: StackerId) -> float:
        with self._lock:
            n = len(self._queue(stacker_id))
            return n * self._configs[str(stacker_id)].minutes_per_move

    def duration_label(self, stacker_id: StackerId) -> str:
        return duration_label(self.total_minutes(stacker_id))

    def productivity_summary(self, stacker_id: StackerId) -> List[BayLoad]:
        with self._lock:
            q = self._queue(stacker_id)
            per_move = self._configs[str(stacker_id)].minutes_per_move
            counts: Dict[str, int] = {}
            for item in q:
                counts[item.bay] = counts.get(item.bay, 0) + 1
        return [BayLoad(bay=b, moves=n, minutes=n * per_move) for b, n in counts.items()]

    def search(self, stacker_id: StackerId, partial: str) -> Optional[int]:
        term = (partial or "").upper()
        if not term:
            return None
        for i, item in enumerate(self.queue(stacker_id)):
            if term in item.cntr:
                return i
        return None

    def plan_rows(self, stacker_id: StackerId) -> List[PlanRow]:
        with self._lock:
            q = list(self._queue(stacker_id))
            cfg = self._configs[str(stacker_id)]
        clock = MoveClock(rate_mph=float(max(MIN_MPH, cfg.mph)))
        start = self._start_dt(cfg)
        return [
            PlanRow(
                seq=i + 1,
                eta=clock.consume(start, i),
                cntr=item.cntr,
                service=item.service,
                location=item.location,
                quadra=item.quadra,
            )
            for i, item in enumerate(q)
        ]


def plan_rows_to_df(rows: List[PlanRow]) -> pd.DataFrame:
    return pd.DataFrame([{
        "SEQ": r.seq,
        "HORA_ESTIMADA": r.eta_label,
        "CNTR": r.cntr,
        "SERVICO": r.service,
        "LOCAL_ATUAL": r.location,
        "QUADRA": r.quadra,
    } for r in rows], columns=["SEQ", "HORA_ESTIMADA", "CNTR", "SERVICO", "LOCAL_ATUAL", "QUADRA"])
