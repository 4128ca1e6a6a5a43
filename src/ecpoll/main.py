from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import os
import sys
from typing import Any

from .clients import Clients, build_clients
from .config import load_config
from .formatter import describe_candidate, format_poll_failure
from .models import parse_rfc3339_datetime
from .poller import InvalidConfiguration, PollError, PollOptions, PollTimeout
from .predicates import KeywordPredicate, always
from .sources.dns_srv import lookup_primary_srv, wait_for_srv_target


EXIT_MATCHED = 0
EXIT_TIMEOUT = 1
EXIT_ERROR = 2


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="ecpoll", description="Wait for eventually-consistent external state")
    p.add_argument("--config", required=True, help="Path to JSON config file")
    p.add_argument(
        "--log-level",
        default=None,
        help="Log level (DEBUG/INFO/WARNING/ERROR). Defaults to env ECPOLL_LOG_LEVEL or INFO",
    )
    p.add_argument("--timeout", type=float, default=None, help="Override poll timeout seconds")
    p.add_argument("--interval", type=float, default=None, help="Override poll interval seconds")

    sub = p.add_subparsers(dest="command", required=True)

    call = sub.add_parser("call", help="Wait for an outbound call with the expected caller id in the Twilio log")
    call.add_argument("--to", required=True, help="Destination number")
    call.add_argument("--caller-id", required=True, help="Expected caller id (from number)")

    status = sub.add_parser("call-status", help="Wait for a Twilio call to reach a terminal status")
    status.add_argument("--sid", required=True, help="Twilio CallSid")

    mail = sub.add_parser("email", help="Wait for a message received after a timestamp")
    mail.add_argument("--after", required=True, help="ISO8601 timestamp, e.g. 2026-02-10T12:00:00Z")
    mail.add_argument("--subject-contains", action="append", default=[], help="Keyword (repeatable, any match)")

    srv = sub.add_parser("srv", help="Wait for an SRV record (optionally with a given target)")
    srv.add_argument("--name", required=True, help="SRV name, e.g. _sip._udp.example.com")
    srv.add_argument("--target", default=None, help="Expected target host")
    return p


def _resolve_log_level(value: str | None) -> int:
    v = (value or "").strip().upper()
    if not v:
        return logging.INFO
    level = logging.getLevelNamesMapping().get(v)
    if isinstance(level, int):
        return level
    return logging.INFO


def _override_options(base: PollOptions, timeout: float | None, interval: float | None) -> PollOptions:
    changes: dict[str, Any] = {}
    if timeout is not None:
        changes["timeout_seconds"] = timeout
    if interval is not None:
        changes["interval_seconds"] = interval
    return dataclasses.replace(base, **changes) if changes else base


async def _run_command(args: argparse.Namespace, clients: Clients, options: PollOptions) -> Any:
    if args.command in ("call", "call-status"):
        if clients.call_verifier is None:
            raise InvalidConfiguration("twilio is not configured (missing $.twilio or credentials)")
        if args.command == "call":
            return await clients.call_verifier.wait_for_outbound_call(args.to, args.caller_id, options=options)
        return await clients.call_verifier.wait_for_call_completion(args.sid, options=options)

    if args.command == "email":
        after = parse_rfc3339_datetime(args.after)
        if clients.inbox is None:
            raise InvalidConfiguration("inbox is not configured (missing $.inbox or credentials)")
        predicate = KeywordPredicate(keywords=tuple(args.subject_contains), fields=("subject",)) if args.subject_contains else always
        return await clients.inbox.wait_for_message(
            after=after,
            predicate=predicate,
            options=options,
        )

    if args.target:
        return await wait_for_srv_target(clients.resolver, args.name, args.target, options=options)
    return await lookup_primary_srv(clients.resolver, args.name, options=options)


def main(argv: list[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)
    logging.basicConfig(
        level=_resolve_log_level(args.log_level or os.environ.get("ECPOLL_LOG_LEVEL")),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logger = logging.getLogger("ecpoll")

    try:
        config = load_config(args.config)
    except (ValueError, OSError) as e:
        logger.error("invalid config: path=%s err=%s", args.config, e)
        return EXIT_ERROR
    clients = build_clients(config)
    options = _override_options(config.poll, args.timeout, args.interval)
    logger.info(
        "ecpoll start: command=%s timeout_s=%g interval_s=%g source_error_retries=%d",
        args.command,
        options.timeout_seconds,
        options.interval_seconds,
        options.source_error_retries,
    )

    try:
        record = asyncio.run(_run_command(args, clients, options))
    except PollTimeout as e:
        logger.error("%s", format_poll_failure(e))
        return EXIT_TIMEOUT
    except PollError as e:
        logger.error("%s", format_poll_failure(e))
        return EXIT_ERROR
    except ValueError as e:
        logger.error("invalid argument: command=%s err=%s", args.command, e)
        return EXIT_ERROR

    sys.stdout.write(describe_candidate(record) + "\n")
    return EXIT_MATCHED


if __name__ == "__main__":
    raise SystemExit(main())
