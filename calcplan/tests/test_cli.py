"""
Tests for the command-line interface.

Tests:
- validate / render / build / verify round trip through files
- Exit codes on failure
"""

import json

import pytest

from ..cli import main
from .conftest import GS_INPUT, GS_PLAN


@pytest.fixture
def files(tmp_path):
    input_path = tmp_path / "input.json"
    plan_path = tmp_path / "plan.json"
    input_path.write_text(json.dumps(GS_INPUT, ensure_ascii=False), encoding="utf-8")
    plan_path.write_text(json.dumps(GS_PLAN, ensure_ascii=False), encoding="utf-8")
    return tmp_path, str(input_path), str(plan_path)


class TestCLI:
    """Commands over JSON files on disk."""

    def test_validate(self, files, capsys):
        _, input_path, plan_path = files
        main(["validate", input_path, plan_path, "--repair"])
        out = capsys.readouterr().out
        assert "Valid: 3 details" in out
        assert "synthesize-buffs" in out

    def test_render_then_verify(self, files, capsys):
        tmp_path, input_path, plan_path = files
        js_path = str(tmp_path / "calc.js")
        main(["render", input_path, plan_path, "-o", js_path, "--created-by", "cli-tests"])
        main(["verify", input_path, js_path])
        out = capsys.readouterr().out
        assert f"Wrote {js_path}" in out
        assert "OK: 3 details" in out

    def test_build_without_plan(self, files, capsys):
        _, input_path, _ = files
        main(["build", input_path])
        captured = capsys.readouterr()
        assert "Heuristic plan used: no plan supplied" in captured.err
        assert "export const details" in captured.out

    def test_missing_file(self, files, capsys):
        tmp_path, input_path, _ = files
        with pytest.raises(SystemExit) as exc:
            main(["validate", input_path, str(tmp_path / "missing.json")])
        assert exc.value.code == 1
        assert "File not found" in capsys.readouterr().out

    def test_invalid_plan(self, files, capsys):
        tmp_path, input_path, _ = files
        bad = tmp_path / "bad.json"
        bad.write_text(json.dumps({"mainAttr": "atk", "details": []}), encoding="utf-8")
        with pytest.raises(SystemExit):
            main(["validate", input_path, str(bad)])
        assert "no valid details" in capsys.readouterr().out

    def test_no_command(self, capsys):
        with pytest.raises(SystemExit):
            main([])
