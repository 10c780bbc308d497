# SPDX-License-Identifier: AGPL-3.0-or-later
"""Command line interface for alert delivery and escalation dry runs."""

from __future__ import annotations

import argparse
import json
import logging
import sys
import threading
import time

from .notifier import DeliveryError, DryRunNotifier, build_notifier
from .phone import normalize_phone
from .scheduler import EscalationScheduler, SchedulingError
from .settings import get_settings

_SECRET_FIELDS = ("auth_token", "account_sid", "sentry_dsn")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Helmet alert notifications and escalations")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log lifecycle events to stderr")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("settings", help="Print resolved settings as JSON (secrets masked)")

    notify_parser = subparsers.add_parser("notify", help="Send a one-off delivery")
    notify_subparsers = notify_parser.add_subparsers(dest="notify_command", required=True)
    sms_parser = notify_subparsers.add_parser("sms", help="Send an SMS")
    sms_parser.add_argument("--to", required=True, help="Destination phone number")
    sms_parser.add_argument("--body", required=True, help="Message text")
    call_parser = notify_subparsers.add_parser("call", help="Place a voice call")
    call_parser.add_argument("--to", required=True, help="Destination phone number")
    call_parser.add_argument(
        "--url",
        help="Call instructions URL (defaults to notifier.base_url + notifier.voice_path)",
    )

    simulate_parser = subparsers.add_parser(
        "simulate",
        help="Run one escalation end to end against the dry-run notifier",
    )
    simulate_parser.add_argument("--subject", required=True, help="Subject id (e.g. helmet id)")
    simulate_parser.add_argument("--delay", type=float, required=True, help="Grace period in seconds")
    simulate_parser.add_argument(
        "--ack-after",
        type=float,
        help="Acknowledge (cancel) after this many seconds",
    )
    simulate_parser.add_argument("--to", default="0000000000", help="Family phone number")

    return parser.parse_args(argv)


def _masked_settings() -> dict:
    payload = get_settings().model_dump(mode="json")
    for section in payload.values():
        if not isinstance(section, dict):
            continue
        for key in _SECRET_FIELDS:
            if section.get(key):
                section[key] = "***"
    return payload


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.INFO)
    if args.command == "settings":
        print(json.dumps(_masked_settings(), ensure_ascii=False, indent=2))
        return 0
    if args.command == "notify":
        return _handle_notify(args)
    if args.command == "simulate":
        return _handle_simulate(args)
    raise ValueError(f"Unhandled command: {args.command}")


def _handle_notify(args: argparse.Namespace) -> int:
    settings = get_settings().notifier
    destination = normalize_phone(args.to, settings.default_country_code)
    if destination is None:
        print("Destination phone number is empty", file=sys.stderr)
        return 2
    notifier = build_notifier(settings)
    try:
        if args.notify_command == "sms":
            receipt = notifier.send_immediate(destination, args.body)
        else:
            receipt = notifier.send_escalation(destination, args.url or settings.voice_url)
    except DeliveryError as exc:
        print(f"Delivery failed: {exc}", file=sys.stderr)
        return 1
    print(
        json.dumps(
            {
                "notifier": receipt.notifier,
                "channel": receipt.channel,
                "destination": receipt.destination,
                "provider_id": receipt.provider_id,
                "status": receipt.status,
            },
            ensure_ascii=False,
        )
    )
    return 0


def _handle_simulate(args: argparse.Namespace) -> int:
    settings = get_settings().notifier
    destination = normalize_phone(args.to, settings.default_country_code)
    notifier = DryRunNotifier()
    fired = threading.Event()

    def _call_family() -> None:
        try:
            notifier.send_escalation(destination or "", settings.voice_url)
        finally:
            fired.set()

    canceled = False
    with EscalationScheduler(max_workers=1) as scheduler:
        try:
            ticket = scheduler.schedule(args.subject, args.delay, _call_family)
        except SchedulingError as exc:
            print(str(exc), file=sys.stderr)
            return 2
        if args.ack_after is not None:
            time.sleep(max(0.0, args.ack_after))
            canceled = scheduler.cancel(args.subject)
        if not canceled:
            fired.wait(timeout=args.delay + 5.0)
        snapshot = scheduler.snapshot()

    print(
        json.dumps(
            {
                "subject": ticket.subject_id,
                "sequence": ticket.sequence,
                "delay_seconds": ticket.delay,
                "canceled": canceled,
                "fired": fired.is_set(),
                "calls": [message.destination for message in notifier.messages("voice")],
                "stats": snapshot.to_dict(),
            },
            ensure_ascii=False,
            indent=2,
        )
    )
    return 0


__all__ = ["main"]
