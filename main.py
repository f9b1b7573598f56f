"""
dbautopilot — Autonomous Database Control System

Commands:
  run            start the controller and its schedules until interrupted
  once           one monitoring, learning and maintenance pass, then stop
  status         print the persisted system state
  report NAME    print a named report from persisted state
  serve          run the HTTP control app

Usage:
  python main.py run --config autopilot.json
  python main.py report decisions
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys

from config.settings import load_settings
from framework.controller import AutonomousController
from framework.errors import AutopilotError
from framework.reports import ReportGenerator
from utils.alerting import AlertChannel

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("dbautopilot.main")


def build_controller(args) -> AutonomousController:
    settings = load_settings(args.config)
    controller = AutonomousController(settings)
    if args.slack_webhook:
        controller.alerts.configure_channel(AlertChannel.SLACK, {"webhook_url": args.slack_webhook})
    if args.pagerduty_key:
        controller.alerts.configure_channel(AlertChannel.PAGERDUTY, {"routing_key": args.pagerduty_key})
    return controller


def print_banner(title: str) -> None:
    print("\n" + "=" * 80)
    print(f"  {title}")
    print("=" * 80)


async def run_forever(controller: AutonomousController) -> int:
    await controller.start()
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    # Schedules exit on their own in emergency mode
    while controller.is_running and not stop.is_set():
        try:
            await asyncio.wait_for(stop.wait(), timeout=1.0)
        except asyncio.TimeoutError:
            pass

    state = controller.status()
    await controller.stop()
    if state.emergency_mode:
        logger.critical(f"Stopped in emergency mode: {state.last_action}")
        return 2
    return 0


async def run_once(controller: AutonomousController) -> int:
    await controller.start(schedules=False)
    healthy = True
    for cycle in ("monitoring", "learning", "maintenance"):
        if not await controller.run_cycle(cycle):
            healthy = False
            break
    state = controller.status()
    await controller.stop()

    print_banner("SINGLE PASS RESULTS")
    print(f"\n  Status: {state.status}{'  [EMERGENCY MODE]' if state.emergency_mode else ''}")
    print(f"  System Health: {state.system_health:.0f}")
    print(f"  AI Decisions: {state.ai_decisions}")
    print(f"  Automatic Fixes: {state.automatic_fixes}")
    print(f"  Learning Progress: {state.learning_progress:.0f}%")
    print(f"  Recommendations: {len(state.recommendations)}")
    for rec in state.recommendations[:10]:
        approval = " [REQUIRES APPROVAL]" if rec.requires_approval else ""
        print(f"    - [{rec.priority}] {rec.description}{approval}")
    print()
    return 0 if healthy else 2


async def show_report(controller: AutonomousController, name: str) -> int:
    await controller.restore(resume=False)
    report = ReportGenerator(controller).generate(name)
    print(json.dumps(report, indent=2, default=str))
    return 0


def serve(args) -> int:
    import uvicorn
    uvicorn.run("app.backend.main:app", host=args.host, port=args.port)
    return 0


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="dbautopilot — autonomous database control system")
    parser.add_argument("--config", help="JSON settings file (default: $AUTOPILOT_CONFIG)")
    parser.add_argument("--slack-webhook", help="Slack incoming webhook for alerts")
    parser.add_argument("--pagerduty-key", help="PagerDuty routing key for critical alerts")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("run", help="Run the controller until interrupted")
    sub.add_parser("once", help="Run each cycle once and stop")
    sub.add_parser("status", help="Print the persisted system state")
    report = sub.add_parser("report", help="Print a named report")
    report.add_argument("name", help="status, health_check, decisions, predictions, metrics, "
                                     "schema_comparison or recommendations")
    srv = sub.add_parser("serve", help="Run the HTTP control app")
    srv.add_argument("--host", default="127.0.0.1")
    srv.add_argument("--port", type=int, default=8000)
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    if args.verbose:
        logging.getLogger("dbautopilot").setLevel(logging.DEBUG)
    if args.command == "serve":
        return serve(args)

    try:
        controller = build_controller(args)
        if args.command == "run":
            return asyncio.run(run_forever(controller))
        if args.command == "once":
            return asyncio.run(run_once(controller))
        name = "status" if args.command == "status" else args.name
        return asyncio.run(show_report(controller, name))
    except AutopilotError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
