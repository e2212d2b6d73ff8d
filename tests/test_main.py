"""
Tests for the command line interface.

Commands run through main() against a temporary database configured via
environment variables, the same way the CLI is used in production.
"""

import argparse
import logging
import sys

import pytest

import main as cli
from database import Database


@pytest.fixture
def run_cli(monkeypatch, tmp_path):
    """Invoke main() with argv, returning (exit code, stdout)."""
    monkeypatch.setenv("DB_PATH", str(tmp_path / "cli.db"))
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "log"))
    monkeypatch.setenv("OPENAI_API_KEY", "")
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level

    def _run(capsys, *argv):
        monkeypatch.setattr(sys, "argv", ["main.py", *argv])
        code = cli.main()
        return code, capsys.readouterr().out

    yield _run

    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
    for handler in saved_handlers:
        root.addHandler(handler)
    root.setLevel(saved_level)


class TestParsers:

    def test_hhmm(self):
        assert cli._parse_hhmm("08:30") == (8, 30)

    def test_hhmm_rejects_out_of_range(self):
        with pytest.raises(argparse.ArgumentTypeError):
            cli._parse_hhmm("25:00")

    def test_weekday_names_and_numbers(self):
        assert cli._parse_weekday("Monday") == 1
        assert cli._parse_weekday("sun") == 0
        assert cli._parse_weekday("6") == 6


class TestCommands:

    def test_target_add_and_list(self, run_cli, capsys):
        code, out = run_cli(
            capsys, "target-add", "semaglutide",
            "--display-name", "Ozempic", "--alias", "NN9535", "--notes", "trial discontinuations only",
        )
        assert code == 0
        assert "Added target Ozempic" in out

        code, out = run_cli(capsys, "targets")
        assert code == 0
        assert "Ozempic" in out and "NN9535" in out

    def test_schedule_set(self, run_cli, capsys, tmp_path):
        code, _ = run_cli(
            capsys, "schedule-set", "--timezone", "Europe/Berlin",
            "--daily", "09:00", "--weekly", "mon", "08:30", "--weekdays-only",
        )
        assert code == 0

        with Database(tmp_path / "cli.db") as db:
            schedule = db.list_schedules()[0]
        assert schedule.timezone == "Europe/Berlin"
        assert (schedule.daily_enabled, schedule.daily_hour) == (True, 9)
        assert (schedule.weekly_day_of_week, schedule.weekly_hour, schedule.weekly_minute) == (1, 8, 30)
        assert schedule.weekdays_only

    def test_schedule_for_unknown_target_fails(self, run_cli, capsys):
        code, _ = run_cli(capsys, "schedule-set", "--target", "missing", "--daily", "09:00")
        assert code == 1

    def test_feedback_on_unknown_item_fails(self, run_cli, capsys):
        code, _ = run_cli(capsys, "feedback", "nope", "good")
        assert code == 1

    def test_digest_without_runs(self, run_cli, capsys):
        code, out = run_cli(capsys, "digest")
        assert code == 0
        assert "No digest found." in out

    def test_no_command_prints_help(self, run_cli, capsys):
        code, out = run_cli(capsys)
        assert code == 0
        assert "target-add" in out
