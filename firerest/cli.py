#!/usr/bin/env python3
"""
firerest: command line access to a Realtime Database over REST.

Usage (examples):
  firerest get https://my-db.firebaseio.com/users --shallow
  firerest get my-db.firebaseio.com/users --order-by '$key' --limit-first 5
  firerest set my-db.firebaseio.com/users/ada --data '{"age": 36}' --auth $DB_SECRET
  firerest push my-db.firebaseio.com/logs --data '"hello"'
  firerest delete my-db.firebaseio.com/logs

Credentials: --auth TOKEN, or $FIREREST_AUTH, or --adc to use Google
Application Default Credentials for ?access_token=.
"""
from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import Any, List, Optional

import google.auth.exceptions
import requests
from dotenv import load_dotenv

from firerest.config.app_config import load_config
from firerest.errors import FirerestError
from firerest.http.transport import Transport
from firerest.logging_utils import setup_logging
from firerest.reference import Reference
from firerest.tokens import default_token_source

log = logging.getLogger("firerest.cli")

COMMANDS = ("get", "set", "update", "push", "delete")


def _json_arg(value: str) -> Any:
    try:
        return json.loads(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"not valid JSON: {e}") from e


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="firerest", description="Realtime Database REST client")
    ap.add_argument("command", choices=COMMANDS)
    ap.add_argument("url", help="database URL, scheme optional")
    ap.add_argument("--data", type=_json_arg, help="JSON value for set/update/push")
    ap.add_argument("--auth", default=None, help="custom auth token (?auth=)")
    ap.add_argument("--adc", action="store_true", help="use Application Default Credentials")
    ap.add_argument("--shallow", action="store_true")
    ap.add_argument("--export", action="store_true", help="include priorities (format=export)")
    ap.add_argument("--order-by", default=None)
    ap.add_argument("--limit-first", type=int, default=0)
    ap.add_argument("--limit-last", type=int, default=0)
    ap.add_argument("--start-at", type=_json_arg, default=None)
    ap.add_argument("--end-at", type=_json_arg, default=None)
    ap.add_argument("--equal-to", type=_json_arg, default=None)
    ap.add_argument("--required", action="store_true", help="fail if the node is missing")
    ap.add_argument("--timeout", type=float, default=None, help="seconds (connect + headers)")
    ap.add_argument("--config", default=None, help="JSON transport config file")
    ap.add_argument("--verbose", "-v", action="store_true")
    return ap


def build_reference(args: argparse.Namespace, transport: Transport) -> Reference:
    ref = Reference(args.url, transport=transport)
    token = args.auth or os.getenv("FIREREST_AUTH")
    if token:
        ref.auth(token)
    if args.adc:
        ref.set_token_source(default_token_source())
    if args.shallow:
        ref = ref.shallow()
    if args.export:
        ref = ref.include_priority()
    if args.order_by:
        ref = ref.order_by(args.order_by)
    if args.limit_first:
        ref = ref.limit_to_first(args.limit_first)
    if args.limit_last:
        ref = ref.limit_to_last(args.limit_last)
    ref = ref.start_at(args.start_at).end_at(args.end_at).equal_to(args.equal_to)
    return ref


def run(args: argparse.Namespace, transport: Transport) -> Any:
    ref = build_reference(args, transport)
    cmd = args.command
    if cmd in ("set", "update", "push") and args.data is None:
        raise SystemExit(f"{cmd} needs --data")

    if cmd == "get":
        return ref.read_required() if args.required else ref.read()
    if cmd == "set":
        ref.write(args.data)
        return None
    if cmd == "update":
        ref.update(args.data)
        return None
    if cmd == "push":
        pushed = ref.create_child(args.data)
        return {"name": pushed.key, "url": pushed.url}
    ref.delete()
    return None


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.WARNING)

    config = load_config(args.config).with_overrides(timeout=args.timeout)
    with Transport(config) as transport:
        try:
            result = run(args, transport)
        except (
            FirerestError,
            ValueError,
            requests.exceptions.RequestException,
            google.auth.exceptions.GoogleAuthError,
        ) as e:
            log.debug("%s failed", args.command, exc_info=True)
            print(f"error: {type(e).__name__}: {e}", file=sys.stderr)
            return 1
    if result is not None:
        print(json.dumps(result, indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    sys.exit(main())
