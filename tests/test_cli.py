"""Tests for the admin CLI."""

from __future__ import annotations

import pytest

from creditgate import __main__ as cli
from creditgate.config import settings


@pytest.fixture
def sqlite_settings(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "database_url", f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}")


async def run(*argv: str) -> int:
    return await cli.run(cli.build_parser().parse_args(argv))


class TestParser:
    """Argument parsing."""

    def test_command_is_required(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])

    def test_grant_arguments(self):
        args = cli.build_parser().parse_args(
            ["grant", "acct-1", "50", "--reason", "Goodwill", "--idempotency-key", "t-1"]
        )
        assert args.amount == 50
        assert args.reason == "Goodwill"
        assert args.idempotency_key == "t-1"


class TestCommands:
    """End-to-end commands against a SQLite database."""

    @pytest.mark.asyncio
    async def test_open_grant_balance_verify(self, sqlite_settings, capsys):
        assert await run("init-db") == 0
        assert await run("open", "acct-1") == 0
        assert await run("grant", "acct-1", "40", "--idempotency-key", "promo-1") == 0
        assert await run("grant", "acct-1", "40", "--idempotency-key", "promo-1") == 0
        capsys.readouterr()

        assert await run("balance", "acct-1") == 0
        assert capsys.readouterr().out.strip() == "40"

        assert await run("history", "acct-1") == 0
        history = capsys.readouterr().out.strip().splitlines()
        assert len(history) == 1
        assert "bonus" in history[0]

        assert await run("verify", "acct-1") == 0
        assert capsys.readouterr().out.startswith("OK")

    @pytest.mark.asyncio
    async def test_grant_to_unknown_account_fails(self, sqlite_settings, capsys):
        await run("init-db")

        assert await run("grant", "ghost", "10") == 1
        assert "not found" in capsys.readouterr().err
