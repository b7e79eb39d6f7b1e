from __future__ import annotations

import argparse
import json
import sys

import requests

from vcheck import db
from vcheck.config import REGION_MODES, ConfigError, load_config, parse_selection
from vcheck.reconciler import run_check
from vcheck.releases import GhCliReleaseSource, source_from_settings
from vcheck.report import render_table, summarize
from vcheck.selector import Filters
from vcheck.settings import settings


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _parse_pins(raw: list[str]) -> dict[str, str]:
    pins: dict[str, str] = {}
    for item in raw:
        key, sep, tag = item.partition("=")
        if not sep or not key.strip() or not tag.strip():
            raise ConfigError(f"Invalid --pin '{item}', expected SERVICE_KEY=TAG")
        pins[key.strip()] = tag.strip()
    return pins


def _filters(args, defaults) -> Filters:
    return Filters(
        tenants=parse_selection(args.tenant or defaults.tenants),
        environments=parse_selection(args.env or defaults.environments),
        services=parse_selection(args.service or defaults.services),
    )


def _check(args) -> int:
    try:
        config = load_config(args.config)
        filters = _filters(args, config.defaults)
        pins = _parse_pins(args.pin)
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    source = source_from_settings()
    if isinstance(source, GhCliReleaseSource):
        problem = source.preflight()
        if problem:
            print(f"ERROR: {problem}", file=sys.stderr)
            return 1

    results, reconciler = run_check(config, filters, args.region_mode, workers=args.workers, pins=pins, source=source)

    if args.json:
        _print({"summary": summarize(results), "interrupted": reconciler.interrupted, "results": [r.to_dict() for r in results]})
    else:
        print(render_table(results, generated_at=db.utc_now()))
        counts = ", ".join(f"{k}={v}" for k, v in summarize(results).items() if v)
        print(f"\n{len(results)} target(s): {counts or 'none selected'}")
    if reconciler.interrupted:
        print("Interrupted: report is partial.", file=sys.stderr)
        return 130
    return 0


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Check deployed service versions against the latest releases")
    sub = p.add_subparsers(dest="cmd", required=True)

    s_chk = sub.add_parser("check", help="Reconcile deployed versions locally")
    s_chk.add_argument("--config", default=settings.config_path, help="Path to config.yaml")
    s_chk.add_argument("--tenant", action="append", help="Tenant filter (repeatable or comma separated; 'all')")
    s_chk.add_argument("--env", action="append", help="Environment filter")
    s_chk.add_argument("--service", action="append", help="Service key filter")
    s_chk.add_argument("--region-mode", choices=REGION_MODES, default=None)
    s_chk.add_argument("--workers", type=int, default=None, help="Parallel targets in flight (1 = sequential)")
    s_chk.add_argument("--pin", action="append", default=[], metavar="KEY=TAG", help="Pin the reference version of a service")
    s_chk.add_argument("--json", action="store_true", help="Print JSON instead of a table")

    s_rep = sub.add_parser("report", help="Fetch a report from a running API")
    s_rep.add_argument("--api", default="http://localhost:8000", help="API base URL")
    s_rep.add_argument("--tenant", action="append")
    s_rep.add_argument("--env", action="append")
    s_rep.add_argument("--service", action="append")
    s_rep.add_argument("--region-mode", choices=REGION_MODES, default=None)

    s_ev = sub.add_parser("events", help="Show diagnostic events")
    s_ev.add_argument("--limit", type=int, default=20)

    args = p.parse_args(argv)

    if args.cmd == "check":
        return _check(args)

    if args.cmd == "report":
        params = {"tenant": args.tenant or [], "env": args.env or [], "service": args.service or []}
        if args.region_mode:
            params["region_mode"] = args.region_mode
        r = requests.get(f"{args.api.rstrip('/')}/report", params=params, timeout=300)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "events":
        _print(db.latest_events(args.limit))
        return 0

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
