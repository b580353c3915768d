"""Script to replay PlayStation lounge scenarios via HTTP APIs.

Usage examples:

- Default (uses built-in presets):
    `python usecase_playstation.py`

- Provide a JSON/YAML config with your own timeline:
    `python usecase_playstation.py --config ./my_scenario.yaml`

- Preview without sending requests:
    `python usecase_playstation.py --dry-run`

The backend must run with ``clock.mode: manual`` so that the script can move
business time forward through ``/debug/clock/advance``. The config file may
define `baseUrl`, `stations` and `timeline`.
"""
from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests
import yaml
from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

BASE_URL = "http://localhost:8000"
SESSION = requests.Session()
DRY_RUN = False
CONSOLE = Console()
SNAPSHOT_ROWS: List[Dict[str, Any]] = []

# ---------------------------------------------------------------------------
# 1) 参与回放的机位：stationId -> MAC（与 app_config.yaml 保持一致）
STATION_PRESETS: List[Dict[str, Any]] = [
    {"stationId": "PS-1", "mac": "AA:BB:CC:00:00:01"},
    {"stationId": "PS-2", "mac": "AA:BB:CC:00:00:02"},
    {"stationId": "PS-3", "mac": "AA:BB:CC:00:00:03"},
]

# ---------------------------------------------------------------------------
# 2) 时间轴：key 为业务分钟，每项 action = {"stationId", "type", "payload"}
#    type 取值：
#      - up / down     -> POST /playstation/webhook（模拟路由器上报）
#      - start         -> POST /sessions
#      - end           -> POST /sessions/{id}/end
#      - pause/resume  -> POST /sessions/{id}/pause | resume
#      - mode          -> POST /sessions/{id}/mode
#      - order         -> POST /sessions/{id}/orders
#      - charge        -> POST /sessions/{id}/charges
#      - timer         -> PUT  /sessions/{id}/timer
#      - transfer      -> POST /sessions/{id}/transfer（payload.targetStationId）
TIMELINE: Dict[int, List[Dict[str, Any]]] = {
    0: [
        {"stationId": "PS-1", "type": "up"},
        {"stationId": "PS-2", "type": "start", "payload": {"timerMinutes": 45}},
    ],
    10: [
        {"stationId": "PS-1", "type": "order", "payload": {"menuItemId": "cola", "quantity": 2}},
    ],
    30: [
        {"stationId": "PS-2", "type": "mode", "payload": {"mode": "multi"}},
        {"stationId": "PS-3", "type": "start"},
    ],
    40: [
        {"stationId": "PS-3", "type": "pause"},
    ],
    50: [
        {"stationId": "PS-3", "type": "resume"},
        {"stationId": "PS-1", "type": "charge", "payload": {"amount": -500, "reason": "loyalty"}},
    ],
    60: [
        {"stationId": "PS-1", "type": "transfer", "payload": {"targetStationId": "PS-2", "includeOrders": True}},
    ],
    75: [
        {"stationId": "PS-2", "type": "end"},
        {"stationId": "PS-3", "type": "end"},
        {"stationId": "PS-1", "type": "down"},
    ],
}

# 每隔多少业务分钟抓一次站点看板
SNAPSHOT_EVERY = 5


def load_config(path: Optional[str]) -> None:
    """Load external config to override baseUrl, stations and timeline.

    Structure:
    {
      "baseUrl": "http://localhost:8000",
      "stations": [ {"stationId": "PS-1", "mac": "AA:BB:CC:00:00:01"}, ... ],
      "timeline": { "0": [{"stationId": "PS-1", "type": "up"}], ... }
    }
    """
    global BASE_URL, STATION_PRESETS, TIMELINE
    if not path:
        return

    file = Path(path)
    if not file.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    if file.suffix.lower() in (".yml", ".yaml"):
        content = yaml.safe_load(file.read_text(encoding="utf-8")) or {}
    else:
        content = json.loads(file.read_text(encoding="utf-8")) or {}

    if isinstance(content.get("baseUrl"), str):
        BASE_URL = content["baseUrl"].rstrip("/")
    if isinstance(content.get("stations"), list):
        STATION_PRESETS = content["stations"]
    if isinstance(content.get("timeline"), dict):
        timeline: Dict[int, List[Dict[str, Any]]] = {}
        for key, actions in content["timeline"].items():
            try:
                minute = int(key)
            except (TypeError, ValueError):
                raise ValueError(f"Timeline minute keys must be integers: got {key}")
            if not isinstance(actions, list):
                raise ValueError(f"Timeline minute {minute} must be a list of actions")
            timeline[minute] = actions
        TIMELINE = timeline


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Replay PlayStation session timeline against the billing backend")
    parser.add_argument("--config", type=str, default=None, help="Path to JSON/YAML config")
    parser.add_argument("--dry-run", action="store_true", help="Print requests without sending")
    parser.add_argument("--base-url", type=str, default=None, help="Override backend base URL")
    parser.add_argument("--max-minutes", type=int, default=None, help="Limit replay to N minutes")
    parser.add_argument("--excel", type=str, default=None, help="Export snapshots to this .xlsx file")
    return parser.parse_args()


def main() -> None:
    global BASE_URL, DRY_RUN
    args = parse_args()
    load_config(args.config)
    DRY_RUN = bool(args.dry_run)
    if args.base_url:
        BASE_URL = args.base_url.rstrip("/")

    if not DRY_RUN and not ensure_manual_clock():
        return
    simulate_timeline(max_minutes=args.max_minutes)
    if args.excel:
        export_excel_snapshots(SNAPSHOT_ROWS, args.excel)


# --- HTTP helpers ---------------------------------------------------------

def _request(method: str, path: str, body: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
    if DRY_RUN:
        CONSOLE.print(Panel.fit(f"[DRY] {method} {BASE_URL}{path} {body or ''}", title="Dry Run", border_style="magenta"))
        return None
    try:
        resp = SESSION.request(method, f"{BASE_URL}{path}", json=body, timeout=5)
        resp.raise_for_status()
        return resp.json()
    except requests.HTTPError as exc:
        # 业务错误（409 / 422 等）只展示，不中断回放
        detail = str(exc)
        if exc.response is not None:
            try:
                detail = exc.response.json().get("detail", detail)
            except ValueError:
                detail = exc.response.text or detail
        CONSOLE.print(Panel(f"[red]❌ {method} {path}[/]\n[yellow]{detail}[/]", title="⚠️ Request Rejected", border_style="red"))
    except requests.RequestException as exc:
        CONSOLE.print(Panel(f"[red]❌ {method} {path}[/]\n[yellow]{exc}[/]", title="⚠️ Network Error", border_style="red"))
    return None


def ensure_manual_clock() -> bool:
    body = _request("GET", "/debug/clock")
    if body is None:
        return False
    if body.get("mode") != "manual":
        CONSOLE.print("[red]Backend clock is not manual; set clock.mode: manual in app_config.yaml[/]")
        return False
    CONSOLE.print(f"[cyan]Business clock starts at {body.get('now')}[/]")
    return True


def active_session_id(station_id: str) -> Optional[str]:
    if DRY_RUN:
        return f"<session@{station_id}>"
    body = _request("GET", f"/stations/{station_id}")
    session = (body or {}).get("session")
    return session["sessionId"] if session else None


def _mac_for(station_id: str) -> str:
    for preset in STATION_PRESETS:
        if preset["stationId"] == station_id:
            return preset["mac"]
    raise ValueError(f"No MAC configured for station {station_id}")


def send_action(action: Dict[str, Any]) -> None:
    station_id = action["stationId"]
    action_type = action["type"]
    payload = dict(action.get("payload") or {})

    if action_type in ("up", "down"):
        body = _request("POST", "/playstation/webhook", {"mac": _mac_for(station_id), "action": action_type})
        if body:
            CONSOLE.print(f"[blue]{station_id} {action_type}[/] → {body.get('action') or body.get('message')}")
        return
    if action_type == "start":
        _request("POST", "/sessions", {"stationId": station_id, **payload})
        return

    session_id = active_session_id(station_id)
    if session_id is None:
        CONSOLE.print(f"[yellow]⚠ {action_type}: no active session on {station_id}[/]")
        return

    if action_type in ("end", "pause", "resume", "mode"):
        _request("POST", f"/sessions/{session_id}/{action_type}", payload or None)
    elif action_type == "order":
        _request("POST", f"/sessions/{session_id}/orders", payload)
    elif action_type == "charge":
        _request("POST", f"/sessions/{session_id}/charges", payload)
    elif action_type == "timer":
        _request("PUT", f"/sessions/{session_id}/timer", payload)
    elif action_type == "transfer":
        target_id = active_session_id(payload.pop("targetStationId"))
        if target_id is None:
            CONSOLE.print("[yellow]⚠ transfer: target station has no active session[/]")
            return
        _request(
            "POST",
            f"/sessions/{session_id}/transfer",
            {"targetSessionId": target_id, "includeOrders": bool(payload.get("includeOrders"))},
        )
    else:
        raise ValueError(f"Unknown action type: {action_type}")
    CONSOLE.print(f"[blue]{station_id}[/] {action_type} {payload or ''}")


def advance_clock(minutes: int) -> None:
    body = _request("POST", "/debug/clock/advance", {"minutes": minutes, "evaluate": True})
    for event in (body or {}).get("events", []):
        CONSOLE.print(f"[magenta]🔔 {event['type']}[/] station={event['stationId']} {event.get('payload')}")


def simulate_timeline(max_minutes: Optional[int] = None) -> None:
    last_minute = max(TIMELINE) if TIMELINE else 0
    if max_minutes is not None:
        last_minute = min(last_minute, max_minutes)

    for minute in range(0, last_minute + 1):
        if minute > 0:
            advance_clock(1)
        for action in TIMELINE.get(minute, []):
            send_action(action)
        if minute % SNAPSHOT_EVERY == 0 or minute == last_minute:
            snapshot_stations(minute)


def snapshot_stations(minute: int) -> None:
    body = _request("GET", "/stations")
    if body is None:
        return
    table = Table(title=f"Snapshot @ minute {minute}", box=box.SIMPLE)
    table.add_column("Station")
    table.add_column("State")
    table.add_column("Mode")
    table.add_column("Minutes")
    table.add_column("Gaming")
    table.add_column("Net")
    for station in body.get("stations", []):
        session = station.get("session") or {}
        live = station.get("liveCost") or {}
        row = {
            "minute": minute,
            "stationId": station["stationId"],
            "state": station["state"],
            "mode": session.get("currentMode", ""),
            "elapsedMinutes": live.get("elapsedMinutes", 0),
            "gamingCost": live.get("gamingCost", 0),
            "netTotal": live.get("netTotal", 0),
        }
        SNAPSHOT_ROWS.append(row)
        table.add_row(
            row["stationId"],
            row["state"],
            row["mode"],
            str(row["elapsedMinutes"]),
            f"{row['gamingCost'] / 100:.2f}",
            f"{row['netTotal'] / 100:.2f}",
        )
    CONSOLE.print(table)


def export_excel_snapshots(rows: List[Dict[str, Any]], filename: str) -> None:
    if not rows:
        CONSOLE.print("[yellow]⚠ No snapshots to export[/]")
        return
    wb = Workbook()
    ws = wb.active
    ws.title = "机位计费回放"

    header_fill = PatternFill("solid", fgColor="FFF2CC")
    stations = sorted({r["stationId"] for r in rows})
    minutes = sorted({r["minute"] for r in rows})

    # 第一行为机位分组，第二行为子列
    ws.cell(row=1, column=1, value="时间(min)")
    ws.merge_cells(start_row=1, start_column=1, end_row=2, end_column=1)
    col = 2
    for station_id in stations:
        ws.merge_cells(start_row=1, start_column=col, end_row=1, end_column=col + 2)
        ws.cell(row=1, column=col, value=station_id)
        for offset, label in enumerate(("状态", "游戏费", "合计")):
            ws.cell(row=2, column=col + offset, value=label)
        col += 3
    for r in (1, 2):
        for c in range(1, col):
            cell = ws.cell(row=r, column=c)
            cell.fill = header_fill
            cell.font = Font(bold=True)
            cell.alignment = Alignment(horizontal="center")

    data = {(r["minute"], r["stationId"]): r for r in rows}
    for row_idx, minute in enumerate(minutes, start=3):
        ws.cell(row=row_idx, column=1, value=minute)
        col = 2
        for station_id in stations:
            r = data.get((minute, station_id))
            if r:
                ws.cell(row=row_idx, column=col, value=r["state"])
                ws.cell(row=row_idx, column=col + 1, value=r["gamingCost"] / 100)
                ws.cell(row=row_idx, column=col + 2, value=r["netTotal"] / 100)
            col += 3

    for col_idx in range(1, ws.max_column + 1):
        ws.column_dimensions[get_column_letter(col_idx)].width = 12

    try:
        wb.save(filename)
        CONSOLE.print(f"[green]✔ Excel exported: {filename}[/]")
    except OSError as exc:
        CONSOLE.print(f"[red]Failed to write Excel: {exc}[/]")


if __name__ == "__main__":
    main()
