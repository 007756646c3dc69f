from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional
import logging
import re

from yard_core import ROWS_PER_BAY, TIERS_PER_ROW, StockItem

logger = logging.getLogger(__name__)

ROW_LABELS = ["A", "B", "C", "D", "E", "F"]

RowGroups = Dict[str, Dict[str, Dict[int, List[StockItem]]]]


# ----------------------------
# Ordering helpers
# ----------------------------

def _bay_number(bay: str) -> Optional[int]:
    digits = re.sub(r"\D+", "", str(bay))
    return int(digits) if digits else None


def sort_bays(bays: Iterable[str]) -> List[str]:
    """Numeric order when every label carries a number, else plain string order."""
    bays = list(bays)
    nums = [_bay_number(b) for b in bays]
    if bays and all(n is not None for n in nums):
        return [b for _n, b in sorted(zip(nums, bays))]
    return sorted(bays)


def bay_stack(items: Iterable[StockItem]) -> List[StockItem]:
    """A bay's units ordered by position suffix, highest first."""
    return sorted(items, key=lambda it: it.pos, reverse=True)


def pick_stack(items: Iterable[StockItem], item_id: str) -> List[StockItem]:
    """
    Units from the top of the bay stack down to (and including) `item_id`.

    This is what gets moved when an operator picks a unit in the stock tree:
    everything stacked before it comes along. Empty if the id is not there.
    """
    stack = bay_stack(items)
    for i, it in enumerate(stack):
        if it.item_id == item_id:
            return stack[: i + 1]
    return []


# ----------------------------
# Row groupings
# ----------------------------

def group_by_bay(items: Iterable[StockItem]) -> Dict[str, Dict[str, List[StockItem]]]:
    """quadra -> bay -> units, keys sorted."""
    raw: Dict[str, Dict[str, List[StockItem]]] = {}
    for it in items:
        if not it.quadra or not it.bay:
            continue
        raw.setdefault(it.quadra, {}).setdefault(it.bay, []).append(it)

    return {
        q: {b: raw[q][b] for b in sort_bays(raw[q])}
        for q in sorted(raw)
    }


def group_by_row(items: Iterable[StockItem]) -> RowGroups:
    """
    quadra -> bay -> row index (0=A .. 5=F) -> units, top tier first.

    Units without a quadra/bay (no usable location) are left out.
    """
    out: RowGroups = {}
    for q, bays in group_by_bay(items).items():
        out[q] = {}
        for b, units in bays.items():
            rows: Dict[int, List[StockItem]] = {}
            for it in units:
                rows.setdefault(it.coordinate.row, []).append(it)
            for r in rows:
                rows[r].sort(key=lambda it: it.coordinate.tier, reverse=True)
            out[q][b] = dict(sorted(rows.items()))
    return out


# ----------------------------
# Fine 6x6 bay grid
# ----------------------------

@dataclass
class BayGrid:
    """
    cells[t][r]: t = 6 - tier (row 0 of the matrix is tier 6), r = row index.

    `relocated` holds ids that collided with another unit and were moved to
    the first free cell; `dropped` holds ids that found no free cell at all.
    """
    bay: str
    cells: List[List[Optional[StockItem]]]
    total: int = 0
    relocated: List[str] = field(default_factory=list)
    dropped: List[str] = field(default_factory=list)

    def at(self, row: int, tier: int) -> Optional[StockItem]:
        return self.cells[TIERS_PER_ROW - tier][row]

    def placed(self) -> List[StockItem]:
        return [c for line in self.cells for c in line if c is not None]


def _empty_cells() -> List[List[Optional[StockItem]]]:
    return [[None] * ROWS_PER_BAY for _ in range(TIERS_PER_ROW)]


def _first_free(cells: List[List[Optional[StockItem]]]) -> Optional[tuple[int, int]]:
    # tier 6 down to tier 1, row A to F
    for t in range(TIERS_PER_ROW):
        for r in range(ROWS_PER_BAY):
            if cells[t][r] is None:
                return t, r
    return None


def build_bay_grid(bay: str, items: Iterable[StockItem]) -> BayGrid:
    cells = _empty_cells()
    grid = BayGrid(bay=bay, cells=cells)
    placed_ids: set[str] = set()

    for it in items:
        grid.total += 1
        if it.item_id in placed_ids:
            continue

        coord = it.coordinate
        t, r = TIERS_PER_ROW - coord.tier, coord.row
        if cells[t][r] is None:
            cells[t][r] = it
            placed_ids.add(it.item_id)
            continue

        free = _first_free(cells)
        if free is None:
            grid.dropped.append(it.item_id)
            continue
        ft, fr = free
        cells[ft][fr] = it
        placed_ids.add(it.item_id)
        grid.relocated.append(it.item_id)

    if grid.relocated:
        logger.info("Bay %s: %d units relocated by position collision", bay, len(grid.relocated))
    if grid.dropped:
        logger.warning("Bay %s grid full: %d units left out of the view", bay, len(grid.dropped))
    return grid


def build_quadra_grids(items: Iterable[StockItem], quadra: str) -> List[BayGrid]:
    """One 6x6 grid per bay of `quadra`, in bay order."""
    bays = group_by_bay(it for it in items if it.quadra == quadra).get(quadra, {})
    return [build_bay_grid(b, units) for b, units in bays.items()]


def build_yard_grids(items: Iterable[StockItem]) -> Dict[str, List[BayGrid]]:
    return {
        q: [build_bay_grid(b, units) for b, units in bays.items()]
        for q, bays in group_by_bay(items).items()
    }


def grid_services(grids: Iterable[BayGrid]) -> List[str]:
    """Sorted distinct services shown in a set of grids (legend entries)."""
    return sorted({it.service for g in grids for it in g.placed() if it.service})
