"""
Entry point: connects to a device, submits one instruction as a turn and
prints what the agent did.

The implementation is split into modular components under device_agent/.
"""

from __future__ import annotations

import argparse
import logging

from device_agent.agents.inference import ChatModelInference
from device_agent.core.actions import describe
from device_agent.core.apps import AppTable
from device_agent.core.orchestrator import SessionCoordinator
from device_agent.core.types import TurnResult
from device_agent.devices.adb import AdbDevice
from device_agent.devices.browser import PlaywrightDevice

USER_QUERY = "open settings and tap Network & internet"

BROWSER_APPS = {
    "google": "https://www.google.com",
    "search": "https://www.google.com",
    "youtube": "https://www.youtube.com",
    "maps": "https://maps.google.com",
    "gmail": "https://mail.google.com",
    "email": "https://mail.google.com",
    "calendar": "https://calendar.google.com",
    "wikipedia": "https://www.wikipedia.org",
}


def print_summary(user_query: str, result: TurnResult) -> None:
    print("\n=== Turn result ===")
    print("User query:", user_query)
    print("Turn id:", result.turn_id)
    print("Response:", result.response)
    print("Complete:", result.is_complete)
    if result.error_kind is not None:
        print("Error:", result.error_kind.value)
    if result.plan is not None:
        print("Reasoning:", result.plan.reasoning or "-")
        if result.plan.used_fallback:
            print("Plan came from the heuristic fallback.")
    report = result.report
    if report is not None:
        print(f"Plan status: {report.status.value}")
        print("Actions:")
        for r in report.results:
            outcome = "ok" if r.succeeded else (r.error_kind.value if r.error_kind else "failed")
            extra = f" ({r.detail})" if r.detail else ""
            print(f"  - {describe(r.action)} -> {outcome} via {r.strategy or '-'}{extra}")
    for item in result.memory_writes:
        print(f"Remembered: {item.key} = {item.value} [{item.category}]")


def main():
    parser = argparse.ArgumentParser(description="Run one assistant turn against a device.")
    parser.add_argument("query", nargs="?", default=USER_QUERY)
    parser.add_argument("--device", choices=["adb", "browser"], default="adb")
    parser.add_argument("--serial", help="adb device serial")
    parser.add_argument("--headless", action="store_true", help="run the browser headless")
    parser.add_argument("--verbose", "-v", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.device == "browser":
        device = PlaywrightDevice.launch(headless=args.headless)
        apps = AppTable(BROWSER_APPS)
    else:
        device = AdbDevice(serial=args.serial) if args.serial else AdbDevice()
        apps = AppTable()

    try:
        with SessionCoordinator(device, ChatModelInference(), apps=apps) as session:
            result = session.run_turn(args.query)
        print_summary(args.query, result)
    finally:
        if isinstance(device, PlaywrightDevice):
            device.close()


if __name__ == "__main__":
    main()
