#!/usr/bin/env python3
"""
signage-overlays CLI
====================

Preview overlay behaviour from a catalog file without a browser.

Usage:
    signage-overlays catalog overlays.yaml           # List definitions + eligibility
    signage-overlays catalog overlays.yaml --json

    signage-overlays simulate overlays.yaml          # Print the state timeline
    signage-overlays simulate overlays.yaml --until 20 --step 0.1
    signage-overlays simulate overlays.yaml --email a@b.co --submit-at 4
    signage-overlays simulate overlays.yaml --demo-sales

    signage-overlays coupon --prefix SPRING --count 5

Catalog file format:
    overlays:
      - id: spring-popup
        type: popup
        content: "Get 20% off your first campaign"
        settings: {displayDelay: 2, autoClose: 10}
    sales:
      - id: s1
        user: {full_name: "Jane Doe", company_name: "Corner Cafe"}
        campaign: {name: "1 Week Ad Campaign"}
        payment_date: "2024-05-01T12:00:00Z"
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

from signage_overlays.backends import (
    LoggingEventRecorder, MemoryCouponIssuer, MemorySubscriptionBackend, StaticDataSource,
)
from signage_overlays.capture import generate_coupon_code
from signage_overlays.catalog import build_definitions
from signage_overlays.clock import VirtualClock
from signage_overlays.config import EngineConfig, get_config, set_config
from signage_overlays.eligibility import is_eligible
from signage_overlays.errors import ValidationError
from signage_overlays.models.definition import OverlayKind
from signage_overlays.models.instance import OverlayInstance
from signage_overlays.session import OverlaySession


def _load_source(args: argparse.Namespace) -> StaticDataSource:
    return StaticDataSource.from_yaml(Path(args.catalog_file), demo_sales=getattr(args, "demo_sales", False))


def cmd_catalog(args: argparse.Namespace) -> int:
    """List definitions in a catalog file."""
    path = Path(args.catalog_file)
    if not path.exists():
        print(f"Catalog file not found: {path}")
        return 1

    source = _load_source(args)
    definitions = build_definitions(source.definitions)
    now = datetime.now(timezone.utc)

    if args.json:
        print(json.dumps(
            [dict(d.to_dict(), eligible=is_eligible(d, now)) for d in definitions],
            indent=2,
        ))
        return 0

    print(f"=== Overlay Catalog ({len(definitions)} of {len(source.definitions)} records) ===")
    for d in definitions:
        flag = "eligible" if is_eligible(d, now) else "inactive"
        print(f"  [{d.priority:>3}] {d.kind.value:<13} {d.id:<24} {flag}")
        print(f"        delay: {d.settings.display_delay:g}s  {d.content[:60]}")
    print(f"\nSales records: {len(source.sales)}")
    return 0


async def _simulate(args: argparse.Namespace) -> int:
    clock = VirtualClock(wall_start=datetime.now(timezone.utc))

    def on_change(instance: OverlayInstance) -> None:
        line = f"[{clock.now():7.2f}s] {instance.kind.value:<13} {instance.instance_id:<36} {instance.state.value}"
        if instance.sale is not None and instance.state.value == "visible":
            sale = instance.sale
            line += f"  {sale.customer_display_name} from {sale.location} bought {sale.campaign_label}"
        if instance.feedback:
            line += f"  ({instance.feedback})"
        print(line)

    subscriptions = MemorySubscriptionBackend()
    issuer = MemoryCouponIssuer(accept=not args.fail_issue)
    session = OverlaySession(
        _load_source(args),
        subscriptions,
        issuer,
        recorder=LoggingEventRecorder(),
        clock=clock,
        listener=on_change,
    )

    catalog = await session.mount()
    if catalog is None or catalog.failed:
        print("Catalog could not be loaded")
        return 1

    target = OverlayKind(args.target)
    submitted = False
    while clock.now() < args.until:
        if args.email and not submitted and clock.now() >= args.submit_at:
            submitted = True
            try:
                result = await session.submit(target, args.email)
            except ValidationError as e:
                print(f"[{clock.now():7.2f}s] submission rejected: {e}")
            else:
                outcome = result.outcome.value if result else "ignored"
                code = f" code={result.coupon_code}" if result and result.coupon_code else ""
                print(f"[{clock.now():7.2f}s] submission: {outcome}{code}")
        clock.advance(args.step)

    await session.workflow.drain()
    session.unmount()

    print(f"\nSubscriptions: {len(subscriptions.calls)}  Coupon emails: {len(issuer.calls)}")
    return 0


def cmd_simulate(args: argparse.Namespace) -> int:
    """Run a session on a virtual clock and print every transition."""
    if not Path(args.catalog_file).exists():
        print(f"Catalog file not found: {args.catalog_file}")
        return 1
    return asyncio.run(_simulate(args))


def cmd_coupon(args: argparse.Namespace) -> int:
    """Generate coupon codes."""
    prefix = args.prefix if args.prefix is not None else get_config().capture.coupon_prefix
    for _ in range(args.count):
        print(generate_coupon_code(prefix, args.length))
    return 0


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Signage overlay engine CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", type=Path, help="Engine config YAML")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="WARNING",
        help="Log level",
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # catalog
    p = subparsers.add_parser("catalog", help="List overlay definitions")
    p.add_argument("catalog_file", help="Catalog YAML file")
    p.add_argument("--json", action="store_true", help="Output as JSON")
    p.set_defaults(func=cmd_catalog)

    # simulate
    p = subparsers.add_parser("simulate", help="Print the overlay timeline")
    p.add_argument("catalog_file", help="Catalog YAML file")
    p.add_argument("--until", type=float, default=30.0, help="Simulated seconds")
    p.add_argument("--step", type=float, default=0.1, help="Clock step in seconds")
    p.add_argument("--email", help="Email to submit")
    p.add_argument("--submit-at", type=float, default=5.0, help="When to submit")
    p.add_argument("--target", choices=[k.value for k in (OverlayKind.POPUP, OverlayKind.BANNER)],
                   default=OverlayKind.POPUP.value, help="Overlay that receives the submission")
    p.add_argument("--fail-issue", action="store_true", help="Make coupon issuance fail")
    p.add_argument("--demo-sales", action="store_true",
                   help="Use demo sales when the file has none")
    p.set_defaults(func=cmd_simulate)

    # coupon
    p = subparsers.add_parser("coupon", help="Generate coupon codes")
    p.add_argument("--prefix", help="Code prefix")
    p.add_argument("--length", type=int, default=6, help="Suffix length")
    p.add_argument("--count", type=int, default=1, help="How many codes")
    p.set_defaults(func=cmd_coupon)

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    if args.config:
        set_config(EngineConfig.from_yaml(args.config))

    if not args.command:
        parser.print_help()
        return 1

    if hasattr(args, "func"):
        return args.func(args)

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
