from __future__ import annotations

import pandas as pd
from pathlib import Path
from datetime import datetime, timedelta
from typing import Iterable, Optional
import json

from yard_core import EmptyPlanError, PlanningBoard, StackerId, plan_rows_to_df
from yard_stats import DashboardSummary, stats_to_df


def plan_csv_name(stacker_id: StackerId) -> str:
    return f"Planejamento_Stacker_{stacker_id}.csv"


def export_plan_csv(board: PlanningBoard, stacker_id: StackerId, out_dir: str | Path = ".") -> Path:
    """
    Write one stacker's queue as a `;` separated CSV (the Excel default for
    pt-BR locales). Refuses an empty plan.
    """
    rows = board.plan_rows(stacker_id)
    if not rows:
        raise EmptyPlanError(f"Stacker {stacker_id} has no units planned; nothing to export.")

    out_path = Path(out_dir) / plan_csv_name(stacker_id)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    plan_rows_to_df(rows).to_csv(out_path, sep=";", index=False, encoding="utf-8")
    return out_path


def write_excel(
    out_path,
    summary: DashboardSummary,
    board: Optional[PlanningBoard] = None,
):
    execution = summary.execution
    totals = pd.DataFrame([
        {"Metric": "Services", "Total": summary.total_services,
         "Done": execution.services_done, "Pending": execution.services_pending},
        {"Metric": "Removals", "Total": summary.total_removals,
         "Done": execution.removals_done, "Pending": execution.removals_pending},
    ])

    with pd.ExcelWriter(out_path, engine="openpyxl") as xw:
        totals.to_excel(xw, index=False, sheet_name="Execution")
        stats_to_df(summary.services).to_excel(xw, index=False, sheet_name="Services")
        stats_to_df(summary.quadras).to_excel(xw, index=False, sheet_name="Quadras")
        if board is not None:
            for sid in board.stackers:
                plan_rows_to_df(board.plan_rows(sid)).to_excel(
                    xw, index=False, sheet_name=f"Stacker {sid}"
                )
            bays = pd.DataFrame([
                {"STACKER": sid, "BAY": b.bay, "MOVES": b.moves, "MINUTES": round(b.minutes, 1)}
                for sid in board.stackers
                for b in board.productivity_summary(sid)
            ], columns=["STACKER", "BAY", "MOVES", "MINUTES"])
            bays.to_excel(xw, index=False, sheet_name="Productivity")


def export_timeline_json(
    board: PlanningBoard,
    out_json_path: str | Path,
    *,
    stackers: Optional[Iterable[StackerId]] = None,
) -> None:
    stackers = list(stackers) if stackers is not None else list(board.stackers)
    groups = [{"id": sid, "label": f"Stacker {sid}"} for sid in stackers]

    items = []
    for sid in stackers:
        per_move = board.config_for(sid).minutes_per_move
        for r in board.plan_rows(sid):
            end = r.eta + timedelta(minutes=per_move)
            items.append({
                "id": f"{sid}-{r.seq}",
                "group": sid,
                "start": r.eta.isoformat(),
                "end": end.isoformat(),
                "label": r.cntr,
                "data": {
                    "seq": r.seq,
                    "cntr": r.cntr,
                    "service": r.service,
                    "location": r.location,
                    "quadra": r.quadra,
                },
            })

    payload = {
        "meta": {
            "generated_at": datetime.now().isoformat(timespec="seconds"),
            "plan_date": board.plan_date.isoformat(),
            "configs": {sid: board.config_for(sid).to_dict() for sid in stackers},
            "segment_count": len(items),
        },
        "groups": groups,
        "items": items,
    }

    Path(out_json_path).write_text(json.dumps(payload, indent=2), encoding="utf-8")
