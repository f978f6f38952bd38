#!/usr/bin/env python3
"""Replay a synthetic incident burst through the alert pipeline.

Runs the full ingest path (classification, deduplication, window
aggregation, flush dispatch) in-process against a canned fleet backend,
without touching the network. Useful to see the debounce and cooldown
behaviour with short timings.

Example:
    python scripts/simulate_events.py --grace 2 --window 20 -v
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Any

_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from fleetalert import AggregationSettings, FleetAlertConfig, FleetAlertService  # noqa: E402
from fleetalert.correlation.dispatcher import Snapshot  # noqa: E402
from fleetalert.notify.alert import AlertMessage  # noqa: E402

_TRACKERS = [
    {"id": 3051, "label": "Unit 12", "source": {"id": 101}},
    {"id": 3052, "label": "Unit 13", "source": {"id": 102}},
]

# (delay before sending, source id, code, speed)
_SCRIPT: list[tuple[float, int, str, float]] = [
    (0.0, 101, "42", 0.0),
    (0.2, 101, "42", 0.0),  # redelivery
    (0.3, 101, "47", 12.0),
    (0.3, 102, "33", 60.0),  # below the overspeed threshold
    (0.3, 101, "46", 18.0),
    (0.5, 102, "42", 0.0),
]


class CannedBackend:
    """Answers the three platform endpoints the service calls."""

    async def post_json(self, endpoint: str, payload: Any) -> dict[str, Any]:
        if endpoint == "/v2/user/auth":
            return {"success": True, "hash": "simulated"}
        if endpoint == "/v2/tracker/list":
            return {"success": True, "list": _TRACKERS}
        if endpoint == "/v2/tracker/read":
            for tracker in _TRACKERS:
                if tracker["id"] == payload.get("tracker_id"):
                    return {"success": True, "value": tracker}
        return {"success": False, "status": {"code": 201, "description": "Not found"}}


class PrintingNotifier:
    async def send_alert(self, alert: AlertMessage) -> int:
        print(f"ALERT {alert.label} @ {alert.event_date}: {', '.join(alert.event_names)} ({alert.coords})")
        return 1


def _frame(source_id: int, code: str, speed: float) -> dict[str, Any]:
    return {
        "type": "event",
        "event": "state_batch",
        "data": [
            {
                "type": "source_state_event",
                "state": {
                    "source_id": source_id,
                    "gps": {"location": {"lat": 20.34, "lng": -102.47}, "speed": speed},
                    "additional": {"event_code": {"value": code}},
                },
            }
        ],
    }


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--window", type=float, default=20.0, help="Window and cooldown length in seconds")
    parser.add_argument("--grace", type=float, default=2.0, help="Debounce delay in seconds")
    parser.add_argument("--required", type=int, default=3, help="Distinct incident types per alert")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable DEBUG logging")
    return parser.parse_args(argv)


async def _run(args: argparse.Namespace) -> int:
    config = FleetAlertConfig(
        login="simulator",
        password="simulator",
        aggregation=AggregationSettings(
            window_seconds=args.window,
            grace_seconds=args.grace,
            required_unique_events=args.required,
        ),
    )
    service = FleetAlertService(config, transport=CannedBackend(), notifier=PrintingNotifier())

    def on_flush(vehicle_id: str | int, snapshot: Snapshot) -> None:
        print(f"FLUSH tracker={vehicle_id} codes={[incident.code for incident in snapshot]}")

    service.add_flush_listener(on_flush)
    await service.refresh_trackers()

    for delay, source_id, code, speed in _SCRIPT:
        await asyncio.sleep(delay)
        for result in await service.handle_message(_frame(source_id, code, speed)):
            suffix = f" ({result.record})" if result.record else ""
            print(f"  source={source_id} code={code} -> {result.outcome}{suffix}")

    await asyncio.sleep(args.grace + 0.5)
    await service.stop()
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return asyncio.run(_run(args))


if __name__ == "__main__":
    raise SystemExit(main())
