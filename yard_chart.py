from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Optional, Set

import matplotlib.pyplot as plt
from matplotlib.patches import Patch, Rectangle

from yard_core import PlanningBoard, StackerId, ROWS_PER_BAY, TIERS_PER_ROW
from yard_layout import ROW_LABELS, BayGrid, grid_services


# Fixed colors for the service families operators recognise on sight;
# anything else gets a stable pick from PALETTE.
SERVICE_COLORS = [
    ("VAZIO", "gold"),
    ("IMPORT", "darkorange"),
    ("EXPORT", "royalblue"),
    ("EMBARQUE", "royalblue"),
    ("TRANS", "mediumpurple"),
    ("DTA", "turquoise"),
    ("REEFER", "seagreen"),
    ("RFR", "seagreen"),
    ("DEVOLUCAO", "indianred"),
]
UNSCHEDULED_COLOR = "lightgrey"
UNSCHEDULED_NAMES = {"N/I", "OUTROS"}
PALETTE = [
    "teal", "slateblue", "hotpink", "yellowgreen", "orchid",
    "deepskyblue", "goldenrod", "blueviolet", "tomato",
]


def _string_hash(s: str) -> int:
    # 32-bit "h * 31 + c" rolling hash, stable across runs (unlike hash()).
    h = 0
    for ch in s:
        h = (ord(ch) + ((h << 5) - h)) & 0xFFFFFFFF
    if h & 0x80000000:
        h -= 1 << 32
    return h


def service_color(service: Optional[str]) -> str:
    s = (service or "N/I").upper()
    for token, color in SERVICE_COLORS:
        if token in s:
            return color
    if "SEM AGENDAMENTO" in s or s in UNSCHEDULED_NAMES:
        return UNSCHEDULED_COLOR
    return PALETTE[abs(_string_hash(s)) % len(PALETTE)]


def draw_quadra_map(
    grids: List[BayGrid],
    out_path: Path,
    *,
    title: str = "Quadra",
    planned_ids: Optional[Set[str]] = None,
) -> None:
    """One 6x6 panel per bay: columns are rows A-F, tier 6 on top. Planned units are hatched."""
    planned_ids = planned_ids or set()
    n = max(1, len(grids))

    fig_w = max(6, min(40, n * 2.2))
    fig, axes = plt.subplots(1, n, figsize=(fig_w, 3.6), squeeze=False)
    fig.suptitle(title, fontsize=14)

    for ax, grid in zip(axes[0], grids):
        ax.set_title(f"{grid.bay} ({grid.total})", fontsize=9)
        ax.set_xlim(0, ROWS_PER_BAY)
        ax.set_ylim(0, TIERS_PER_ROW)
        ax.set_xticks([r + 0.5 for r in range(ROWS_PER_BAY)])
        ax.set_xticklabels(ROW_LABELS, fontsize=7)
        ax.set_yticks([t - 0.5 for t in range(1, TIERS_PER_ROW + 1)])
        ax.set_yticklabels([str(t) for t in range(1, TIERS_PER_ROW + 1)], fontsize=7)
        ax.set_aspect("equal")

        for t_idx, line in enumerate(grid.cells):
            tier = TIERS_PER_ROW - t_idx
            for r, item in enumerate(line):
                y = tier - 1
                if item is None:
                    ax.add_patch(Rectangle((r, y), 1, 1, fill=False, linewidth=0.3, alpha=0.4))
                    continue
                ax.add_patch(Rectangle(
                    (r, y), 1, 1,
                    facecolor=service_color(item.service),
                    edgecolor="black",
                    linewidth=1.2 if item.item_id in planned_ids else 0.4,
                    hatch="//" if item.item_id in planned_ids else None,
                ))
                ax.text(r + 0.5, y + 0.5, item.cntr[-4:], ha="center", va="center", fontsize=5, clip_on=True)

        for spine in ["top", "right"]:
            ax.spines[spine].set_visible(False)

    for ax in axes[0][len(grids):]:
        ax.axis("off")

    legend = [Patch(facecolor=service_color(s), label=s) for s in grid_services(grids)]
    if legend:
        fig.legend(handles=legend, loc="lower center", ncol=min(6, len(legend)), fontsize=7)

    out_path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(out_path, dpi=150, bbox_inches="tight")
    plt.close(fig)


def draw_stacker_timeline(
    board: PlanningBoard,
    out_path: Path,
    *,
    stackers: Optional[Iterable[StackerId]] = None,
    title: str = "Stacker plan",
) -> None:
    """Each queued move as a block on its stacker's lane, x axis in minutes from the earliest start."""
    stackers = list(stackers) if stackers is not None else list(board.stackers)
    rows = len(stackers)

    plans = {sid: board.plan_rows(sid) for sid in stackers}
    starts = [board.estimate_time(sid, 0) for sid in stackers]
    origin = min(starts) if starts else None
    horizon = 60.0
    for sid in stackers:
        if plans[sid]:
            end = board.estimate_time(sid, len(plans[sid]))
            horizon = max(horizon, (end - origin).total_seconds() / 60.0)

    fig_h = 2.0 + rows * 0.8
    fig, ax = plt.subplots(figsize=(14, fig_h))
    ax.set_title(title, fontsize=14)
    ax.set_ylim(-0.5, rows - 0.5)
    ax.set_xlim(0, horizon)
    ax.set_yticks(range(rows))
    ax.set_yticklabels([f"Stacker {sid} ({board.config_for(sid).mph}/h)" for sid in stackers])
    ax.invert_yaxis()

    for lane, sid in enumerate(stackers):
        w = board.config_for(sid).minutes_per_move
        for r in plans[sid]:
            x0 = (r.eta - origin).total_seconds() / 60.0
            ax.add_patch(Rectangle(
                (x0, lane - 0.35), w, 0.7,
                facecolor=service_color(r.service),
                edgecolor="black",
                linewidth=0.4,
            ))
            if w >= 3:
                ax.text(x0 + w / 2, lane, r.cntr[-4:], ha="center", va="center", fontsize=6, clip_on=True)

    ax.grid(axis="x", linewidth=0.5, alpha=0.3)
    if origin is not None:
        ax.set_xlabel(f"Minutes from {origin.strftime('%H:%M')}")
    for spine in ["top", "right"]:
        ax.spines[spine].set_visible(False)

    out_path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(out_path, dpi=150, bbox_inches="tight")
    plt.close(fig)
