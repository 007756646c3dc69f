from __future__ import annotations

import argparse
import json
import logging
import re
from pathlib import Path

from cleaning_utils import IngestConfig, load_schedule, load_stock
from config_store import JsonConfigStore
from exporters import export_plan_csv, export_timeline_json, write_excel
from yard_chart import draw_quadra_map, draw_stacker_timeline
from yard_core import PlanningBoard, normalize_cntr
from yard_layout import build_quadra_grids, group_by_bay
from yard_stats import parse_day, summarize


def read_plan_request(path: Path) -> dict[str, list[str]]:
    """`{"1": ["MSCU1234567", ...], "2": [...]}` -> normalized container codes per stacker."""
    doc = json.loads(path.read_text(encoding="utf-8"))
    return {str(sid): [normalize_cntr(c) for c in cntrs] for sid, cntrs in doc.items()}


def apply_plan_request(board: PlanningBoard, request: dict[str, list[str]]) -> int:
    by_cntr = {}
    for item in board.pool():
        by_cntr.setdefault(item.cntr, item)

    moved = 0
    for sid, cntrs in request.items():
        refs = [by_cntr[c] for c in cntrs if c in by_cntr]
        moved += len(board.assign(refs, sid))
    return moved


def main():
    ap = argparse.ArgumentParser(description="Yard stock report and stacker planning")
    ap.add_argument("schedule_xlsx", help="Schedule (agendamento) Excel file")
    ap.add_argument("stock_xlsx", help="Stock (estoque) Excel file")
    ap.add_argument("--plan", help="JSON file with container codes per stacker")
    ap.add_argument("--config", default="stacker_config.json", help="Stacker config JSON file")
    ap.add_argument("--date", type=parse_day, help="Only report schedule rows of this day (YYYY-MM-DD or DD/MM/YYYY)")
    ap.add_argument("--plan-date", type=parse_day, help="Day the stacker start times refer to (YYYY-MM-DD or DD/MM/YYYY)")
    ap.add_argument("--terminal", default=IngestConfig.terminal, help="Terminal code kept from the stock feed")
    ap.add_argument("--out-dir", default="out", help="Output directory")
    ap.add_argument("--charts", action="store_true", help="Also draw quadra maps and the plan timeline")
    ap.add_argument("-v", "--verbose", action="store_true")
    args = ap.parse_args()

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    out_dir = Path(args.out_dir).expanduser().resolve()
    out_dir.mkdir(parents=True, exist_ok=True)
    cfg = IngestConfig(terminal=args.terminal)

    # 1) Load + reconcile the two feeds
    schedule = load_schedule(Path(args.schedule_xlsx).expanduser().resolve(), cfg)
    stock = load_stock(Path(args.stock_xlsx).expanduser().resolve(), schedule, cfg)

    # 2) Build the board with persisted stacker settings
    store = JsonConfigStore(Path(args.config).expanduser())
    board = PlanningBoard.from_stock(stock, configs=store.load(), plan_date=args.plan_date)

    # 3) Apply the requested assignments
    if args.plan:
        moved = apply_plan_request(board, read_plan_request(Path(args.plan)))
        print(f"Planned {moved} units; {len(board.pool())} left in stock.")
    board.validate()

    # 4) Reports
    summary = summarize(schedule, on_date=args.date)
    report_path = out_dir / "yard_report.xlsx"
    write_excel(report_path, summary, board)
    print(f"Wrote: {report_path}")

    for sid in board.stackers:
        if not board.queue(sid):
            continue
        csv_path = export_plan_csv(board, sid, out_dir)
        print(f"Wrote: {csv_path}  ({len(board.queue(sid))} moves, {board.duration_label(sid)})")

    timeline_path = out_dir / "plan.timeline.json"
    export_timeline_json(board, timeline_path)
    print(f"Wrote: {timeline_path}")

    # 5) Optional charts
    if args.charts:
        everything = board.all_items()
        planned = board.planned_ids()
        for quadra in group_by_bay(everything):
            png = out_dir / f"quadra_{re.sub(r'[^A-Za-z0-9_-]', '_', quadra)}.png"
            draw_quadra_map(
                build_quadra_grids(everything, quadra),
                png,
                title=f"Quadra {quadra}",
                planned_ids=planned,
            )
            print(f"Wrote: {png}")
        png = out_dir / "plan_timeline.png"
        draw_stacker_timeline(board, png)
        print(f"Wrote: {png}")

    store.save(board.configs())


if __name__ == "__main__":
    main()
