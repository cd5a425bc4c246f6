"""Tests for the reconcile_jobs CLI command."""

import pytest

from wardrobe.cli import reconcile_jobs


def test_parse_args_defaults():
    args = reconcile_jobs.parse_args([])

    assert args.grace_seconds is None
    assert args.batch_size == 100
    assert args.verbose is False


def test_parse_args_overrides():
    args = reconcile_jobs.parse_args(["--grace-seconds", "600", "--batch-size", "10", "-v"])

    assert args.grace_seconds == 600.0
    assert args.batch_size == 10
    assert args.verbose is True


@pytest.mark.asyncio
async def test_sweep_against_empty_store(db_engine, monkeypatch, capsys):
    url = db_engine.url.render_as_string(hide_password=False)
    monkeypatch.setenv("DATABASE_URL", url)
    monkeypatch.setenv("QUEUE_DATABASE_URL", url)

    exit_code = await reconcile_jobs.async_main(["--grace-seconds", "600"])

    assert exit_code == 0
    output = capsys.readouterr().out
    assert "AI Job Reconciliation Summary" in output
    assert "Stranded queued jobs re-enqueued: 0" in output
