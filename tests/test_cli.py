"""CLI smoke tests (typer CliRunner)."""

import json

from typer.testing import CliRunner

from autoflow.cli.main import app
from autoflow.version import __version__

from conftest import action, automation, chain, edge, trigger

runner = CliRunner()


def _export(tmp_path, a):
    path = tmp_path / "automation.json"
    path.write_text(json.dumps(a.model_dump(mode="json")))
    return path


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert f"autoflow v{__version__}" in result.output


def test_validate_clean(tmp_path):
    a = automation([trigger(), action("a", "opt_out")], chain("t", "a"), name="welcome")
    result = runner.invoke(app, ["validate", str(_export(tmp_path, a))])
    assert result.exit_code == 0
    assert "welcome" in result.output


def test_validate_warnings_only_exit_zero(tmp_path):
    a = automation([trigger(), action("lost", "opt_out")], [])
    result = runner.invoke(app, ["validate", str(_export(tmp_path, a))])
    assert result.exit_code == 0
    assert "warning" in result.output


def test_validate_hard_error_exit_one(tmp_path):
    a = automation(
        [trigger(), action("if", "conditional"), action("x", "opt_out")],
        [edge("t", "if"), edge("if", "x")],
    )
    result = runner.invoke(app, ["validate", str(_export(tmp_path, a))])
    assert result.exit_code == 1
    assert "error" in result.output


def test_validate_unparseable(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json")
    result = runner.invoke(app, ["validate", str(path)])
    assert result.exit_code == 1
    assert "not a valid automation" in result.output


def test_fire_rejects_bad_json(tmp_path):
    result = runner.invoke(app, ["fire", "tag_added", "--contact-id", "7", "--data", "{oops"])
    assert result.exit_code == 2
