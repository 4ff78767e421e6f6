"""
Arbitra command line.

    python -m arbitra serve
    python -m arbitra send --to 127.0.0.1 --sender me --receiver you 12
    python -m arbitra digest --to 127.0.0.1 "Hash this string please"
    python -m arbitra history --limit 10
    python -m arbitra get prefs peers
    python -m arbitra check
"""

import argparse
import asyncio
import json
import sys

from arbitra.audit import configure_logging
from arbitra.config import get_settings, validate_all_settings
from arbitra.orchestrator import AppContext, create_app_components
from arbitra.services.channel import DEFAULT_DIGEST_REQUEST, PeerConnectionError
from arbitra.services.storage import StorageError


async def _serve(ctx: AppContext, args) -> int:
    async with ctx:
        await ctx.start_servers(oracle=not args.no_oracle, host=args.host)
        await asyncio.Event().wait()
    return 0


async def _send(ctx: AppContext, args) -> int:
    message, replies = await ctx.transaction_flow.submit(
        args.sender, args.receiver, args.amount, args.to, args.port,
    )
    print(json.dumps(message.to_wire()))
    for reply in replies:
        print(json.dumps(reply.to_wire()))
    return 0


async def _digest(ctx: AppContext, args) -> int:
    print(await ctx.client.request_digest(args.to, args.port, args.payload))
    return 0


async def _history(ctx: AppContext, args) -> int:
    for record in await ctx.history.recent(args.limit):
        print(f"{record.timestamp.isoformat()}  {record.sender} -> {record.receiver}  {record.amount}")
    return 0


async def _get(ctx: AppContext, args) -> int:
    value = await ctx.store.get(args.document, args.key)
    print(json.dumps(value))
    return 0


def _amount(text: str):
    """Whole numbers stay ints so "12" is sent as 12, not 12.0."""
    value = float(text)
    return int(value) if value.is_integer() else value


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="arbitra", description="Arbitra client core")
    sub = p.add_subparsers(dest="command", required=True)

    s = sub.add_parser("serve", help="Run the hash oracle and message endpoints")
    s.add_argument("--host", default=None)
    s.add_argument("--no-oracle", action="store_true", help="Only run the message endpoint")

    t = sub.add_parser("send", help="Create, store and send a transaction")
    t.add_argument("amount", type=_amount)
    t.add_argument("--sender", required=True)
    t.add_argument("--receiver", required=True)
    t.add_argument("--to", required=True, help="Peer host")
    t.add_argument("--port", type=int, default=None)

    d = sub.add_parser("digest", help="Ask a hash oracle to digest a string")
    d.add_argument("payload", nargs="?", default=DEFAULT_DIGEST_REQUEST.decode())
    d.add_argument("--to", required=True, help="Oracle host")
    d.add_argument("--port", type=int, default=None)

    h = sub.add_parser("history", help="List recent transactions")
    h.add_argument("--limit", type=int, default=None)

    g = sub.add_parser("get", help="Read one key of a keyed document")
    g.add_argument("document")
    g.add_argument("key")

    sub.add_parser("check", help="Validate configuration")
    return p


COMMANDS = {
    "serve": _serve,
    "send": _send,
    "digest": _digest,
    "history": _history,
    "get": _get,
}


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(get_settings().app.log_level)

    if args.command == "check":
        results = validate_all_settings()
        print(json.dumps(results, indent=2))
        return 0 if all(v for k, v in results.items() if not k.endswith("_error")) else 1

    ctx = create_app_components()
    try:
        return asyncio.run(COMMANDS[args.command](ctx, args))
    except KeyboardInterrupt:
        return 130
    except (PeerConnectionError, StorageError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
