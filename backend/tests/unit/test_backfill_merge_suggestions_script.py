"""Tests for backfill_merge_suggestions script behavior."""

import argparse
from unittest.mock import MagicMock, patch

import pytest

from scripts import backfill_merge_suggestions as script


def _args(**overrides) -> argparse.Namespace:
    defaults = {
        "dry_run": False,
        "force": False,
        "limit": 0,
    }
    defaults.update(overrides)
    return argparse.Namespace(**defaults)


def _parser(args: argparse.Namespace) -> MagicMock:
    parser = MagicMock()
    parser.parse_args.return_value = args
    return parser


def _summary(**overrides) -> dict:
    result = {
        "status": "completed",
        "dry_run": False,
        "force": False,
        "processed": 12,
        "checked": 11,
        "suggestions_created": 3,
        "skipped": 0,
        "failed": 1,
        "failed_post_ids": [7],
        "expired": 2,
        "duration_seconds": 4.2,
    }
    result.update(overrides)
    return result


@patch("scripts.backfill_merge_suggestions.settings")
@patch("scripts.backfill_merge_suggestions.run_merge_sweep")
@patch("scripts.backfill_merge_suggestions._build_parser")
def test_main_runs_sweep_with_cli_options(mock_build_parser, mock_run_sweep, mock_settings, capsys):
    mock_settings.llm_configured = True
    mock_build_parser.return_value = _parser(_args(dry_run=True, force=True, limit=25))
    mock_run_sweep.return_value = _summary(dry_run=True, force=True)

    script.main()

    kwargs = mock_run_sweep.call_args.kwargs
    assert kwargs == {"force": True, "dry_run": True, "max_posts": 25}
    assert mock_run_sweep.call_args.args[0] is script.SessionLocal
    out = capsys.readouterr().out
    assert "suggestions_created: 3" in out
    assert "expired: 2" in out


@patch("scripts.backfill_merge_suggestions.settings")
@patch("scripts.backfill_merge_suggestions.run_merge_sweep")
@patch("scripts.backfill_merge_suggestions._build_parser")
def test_main_without_limit_sweeps_everything(mock_build_parser, mock_run_sweep, mock_settings):
    mock_settings.llm_configured = True
    mock_build_parser.return_value = _parser(_args())
    mock_run_sweep.return_value = _summary()

    script.main()

    assert mock_run_sweep.call_args.kwargs["max_posts"] is None


@patch("scripts.backfill_merge_suggestions.settings")
@patch("scripts.backfill_merge_suggestions.run_merge_sweep")
@patch("scripts.backfill_merge_suggestions._build_parser")
def test_main_reports_skipped_sweep(mock_build_parser, mock_run_sweep, mock_settings, capsys):
    mock_settings.llm_configured = True
    mock_build_parser.return_value = _parser(_args())
    mock_run_sweep.return_value = {"status": "skipped", "reason": "already_running"}

    script.main()

    assert "Sweep skipped: already_running" in capsys.readouterr().out


@patch("scripts.backfill_merge_suggestions.settings")
@patch("scripts.backfill_merge_suggestions.run_merge_sweep")
@patch("scripts.backfill_merge_suggestions._build_parser")
def test_main_exits_without_llm_provider(mock_build_parser, mock_run_sweep, mock_settings):
    mock_settings.llm_configured = False
    mock_build_parser.return_value = _parser(_args())

    with pytest.raises(SystemExit) as exc:
        script.main()

    assert exc.value.code == 1
    mock_run_sweep.assert_not_called()


@patch("scripts.backfill_merge_suggestions.settings")
@patch("scripts.backfill_merge_suggestions.run_merge_sweep")
@patch("scripts.backfill_merge_suggestions._build_parser")
def test_main_exits_on_sweep_error(mock_build_parser, mock_run_sweep, mock_settings):
    mock_settings.llm_configured = True
    mock_build_parser.return_value = _parser(_args())
    mock_run_sweep.side_effect = RuntimeError("database unavailable")

    with pytest.raises(SystemExit) as exc:
        script.main()

    assert exc.value.code == 1


def test_parser_defaults():
    args = script._build_parser().parse_args([])

    assert args.dry_run is False
    assert args.force is False
    assert args.limit == 0
