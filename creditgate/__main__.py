"""Admin CLI for the credit ledger.

Usage:
    python -m creditgate init-db
    python -m creditgate open acct-1
    python -m creditgate grant acct-1 100 --reason "Support goodwill"
    python -m creditgate balance acct-1
    python -m creditgate history acct-1 --limit 20
    python -m creditgate verify acct-1
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

import logfire

from creditgate.config import settings
from creditgate.credits.errors import CreditError
from creditgate.credits.grants import GrantManager
from creditgate.credits.ledger import CreditLedger
from creditgate.credits.log import TransactionLog
from creditgate.db import DatabaseManager, SqlLedgerStore


def configure_logging() -> None:
    logfire.configure(
        token=settings.logfire_token,
        send_to_logfire=settings.logfire_token is not None,
        service_name=settings.app_name,
        environment=settings.environment,
        console=False,
    )
    logfire.instrument_pydantic(record="failure")

    logging.basicConfig(
        level=logging.WARNING,
        format="[%(asctime)s][%(name)s][%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logfire.LogfireLoggingHandler(),
        ],
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="creditgate", description=__doc__.splitlines()[0])
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="Create ledger tables that do not exist yet")

    open_cmd = commands.add_parser("open", help="Open an account with a zero balance")
    open_cmd.add_argument("account_id")

    balance_cmd = commands.add_parser("balance", help="Show an account balance")
    balance_cmd.add_argument("account_id")

    history_cmd = commands.add_parser("history", help="List recent transactions")
    history_cmd.add_argument("account_id")
    history_cmd.add_argument("--limit", type=int, default=settings.history_page_size)

    grant_cmd = commands.add_parser("grant", help="Grant bonus credits")
    grant_cmd.add_argument("account_id")
    grant_cmd.add_argument("amount", type=int)
    grant_cmd.add_argument("--reason", default="Manual grant")
    grant_cmd.add_argument("--idempotency-key", default=None)

    verify_cmd = commands.add_parser("verify", help="Replay the log against the balance")
    verify_cmd.add_argument("account_id")

    return parser


async def run(args: argparse.Namespace) -> int:
    logger = logging.getLogger("creditgate")

    db = DatabaseManager(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
    )
    store = SqlLedgerStore(db)
    ledger = CreditLedger(store)
    log = TransactionLog(store)

    try:
        if args.command == "init-db":
            await db.create_schema()
            print("Schema ready")

        elif args.command == "open":
            state = await ledger.open_account(args.account_id)
            print(f"{state.account_id}: {state.balance} credits")

        elif args.command == "balance":
            print(await ledger.balance(args.account_id))

        elif args.command == "history":
            for entry in await log.list(args.account_id, args.limit):
                print(
                    f"#{entry.sequence:<5} {entry.created_at:%Y-%m-%d %H:%M} "
                    f"{entry.type:<9} {entry.amount:>+7} -> {entry.balance_after:<7} "
                    f"{entry.description}"
                )

        elif args.command == "grant":
            result = await GrantManager(ledger).grant_bonus(
                args.account_id,
                args.amount,
                args.reason,
                idempotency_key=args.idempotency_key,
            )
            status = "granted" if result.granted else "already applied"
            print(f"{status}; balance {result.balance}")

        elif args.command == "verify":
            report = await log.verify(args.account_id)
            if report.ok:
                print(f"OK: {report.balance} credits match the log")
            else:
                for issue in report.issues:
                    print(f"MISMATCH: {issue}")
                return 1

    except CreditError as exc:
        logger.warning("Command %s failed: %s", args.command, exc)
        print(f"error: {exc}", file=sys.stderr)
        return 1
    finally:
        await db.disconnect()

    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging()
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
