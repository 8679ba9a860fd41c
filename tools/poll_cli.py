"""Operator CLI for ledger polls and the weekly lifecycle tasks."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any, Awaitable, Callable, Dict, List

from veiledcasts.errors import ComputationTimeoutError, LedgerSubmissionError, PollError, UnconfirmedSubmissionError
from veiledcasts.runtime import Runtime, build_runtime


def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True, default=str))


def _with_runtime(action: Callable[[Runtime, argparse.Namespace], Awaitable[Dict[str, Any]]]):
    def handler(args: argparse.Namespace) -> int:
        async def run() -> Dict[str, Any]:
            runtime = build_runtime()
            try:
                return await action(runtime, args)
            finally:
                await runtime.aclose()
                runtime.close()

        try:
            _emit(asyncio.run(run()))
        except ComputationTimeoutError as exc:
            payload = {"error": str(exc), "hint": exc.hint}
            if isinstance(exc, UnconfirmedSubmissionError):
                payload["signature"] = exc.signature
            _emit(payload)
            return 2
        except LedgerSubmissionError as exc:
            print(exc.diagnostics(), file=sys.stderr)
            return 1
        except PollError as exc:
            _emit({"error": str(exc)})
            return 1
        return 0

    return handler


async def _create(runtime: Runtime, args: argparse.Namespace) -> Dict[str, Any]:
    options = args.option or None
    result = await runtime.pipeline.create_poll(args.poll_id, args.question, options, wait=not args.no_wait)
    return result.to_dict()


async def _vote(runtime: Runtime, args: argparse.Namespace) -> Dict[str, Any]:
    target = await runtime.pipeline.resolve_target(args.poll_id)
    result = await runtime.pipeline.cast_vote(target, args.choice, wait=args.wait)
    return result.to_dict()


async def _reveal(runtime: Runtime, args: argparse.Namespace) -> Dict[str, Any]:
    result = await runtime.reveal.reveal(args.poll_id, timeout=args.timeout)
    return result.to_dict()


async def _status(runtime: Runtime, args: argparse.Namespace) -> Dict[str, Any]:
    poll = runtime.reconciler.polls.get_by_onchain_id(args.poll_id)
    target = await runtime.pipeline.resolve_target(args.poll_id)
    return {
        "pollId": args.poll_id,
        "authority": target.authority,
        "multiOption": target.multi_option,
        "options": target.option_count,
        "projection": poll.to_dict() if poll else None,
    }


_CRON_TASKS = {
    "archive-nominations": lambda runtime: runtime.scheduler.archive_nominations(),
    "promote-polls": lambda runtime: runtime.scheduler.promote_polls(),
    "auto-reveal": lambda runtime: runtime.scheduler.auto_reveal(),
}


async def _cron(runtime: Runtime, args: argparse.Namespace) -> Dict[str, Any]:
    return await _CRON_TASKS[args.task](runtime)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Confidential poll operator tools")
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create", help="Create a poll signed by the authority wallet")
    create.add_argument("poll_id", type=int)
    create.add_argument("question")
    create.add_argument("--option", action="append", help="Answer label; omit for a yes/no poll")
    create.add_argument("--no-wait", action="store_true", help="Return once the instruction is accepted")
    create.set_defaults(func=_with_runtime(_create))

    vote = sub.add_parser("vote", help="Encrypt and submit a vote as the authority wallet")
    vote.add_argument("poll_id", type=int)
    vote.add_argument("choice", type=int)
    vote.add_argument("--wait", action="store_true", help="Wait until the vote is folded into the tally")
    vote.set_defaults(func=_with_runtime(_vote))

    reveal = sub.add_parser("reveal", help="Reveal a poll's decrypted totals")
    reveal.add_argument("poll_id", type=int)
    reveal.add_argument("--timeout", type=float, default=None)
    reveal.set_defaults(func=_with_runtime(_reveal))

    status = sub.add_parser("status", help="Show ledger and projection state of a poll")
    status.add_argument("poll_id", type=int)
    status.set_defaults(func=_with_runtime(_status))

    cron = sub.add_parser("cron", help="Run one lifecycle task now")
    cron.add_argument("task", choices=sorted(_CRON_TASKS))
    cron.set_defaults(func=_with_runtime(_cron))
    return parser


def main(argv: List[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    sys.exit(main(sys.argv[1:]))
