from __future__ import annotations

import json
from pathlib import Path

from typer.testing import CliRunner

from app.cli import app
from tests.helpers.family_fixtures import family_fixture_path

runner = CliRunner()


def test_layout_writes_result(tmp_path: Path) -> None:
    output = tmp_path / "nuclear.layout.json"
    result = runner.invoke(
        app, ["layout", str(family_fixture_path("nuclear.json")), "--focus", "ann", "-o", str(output)]
    )

    assert result.exit_code == 0, result.output
    assert "persons" in result.output
    payload = json.loads(output.read_text(encoding="utf-8"))
    assert payload["positions"]["ann"] == {"x": 50.0, "y": 195.0}
    assert payload["diagnostics"]["validationPassed"] is True
    assert payload["diagnostics"]["generationRange"] == [-1, 0]


def test_layout_uses_configured_output_directory(tmp_path: Path) -> None:
    config_path = tmp_path / "layout.yaml"
    config_path.write_text(
        f"output:\n  directory: {tmp_path / 'layouts'}\n  suffix: .out.json\n", encoding="utf-8"
    )
    result = runner.invoke(
        app,
        [
            "layout",
            str(family_fixture_path("nuclear.json")),
            "-f",
            "bob",
            "--config",
            str(config_path),
            "--all",
            "--strict",
        ],
    )

    assert result.exit_code == 0, result.output
    assert (tmp_path / "layouts" / "nuclear.out.json").exists()


def test_layout_unknown_focus_fails(tmp_path: Path) -> None:
    result = runner.invoke(
        app,
        [
            "layout",
            str(family_fixture_path("nuclear.json")),
            "--focus",
            "ghost",
            "-o",
            str(tmp_path / "out.json"),
        ],
    )

    assert result.exit_code == 1
    assert "ghost" in result.output
    assert not (tmp_path / "out.json").exists()


def test_layout_missing_input_fails(tmp_path: Path) -> None:
    result = runner.invoke(app, ["layout", str(tmp_path / "none.json"), "--focus", "ann"])
    assert result.exit_code == 1
    assert "File not found" in result.output


def test_validate_accepts_fixture() -> None:
    result = runner.invoke(app, ["validate", str(family_fixture_path("nuclear.json"))])
    assert result.exit_code == 0, result.output
    assert "Valid family file" in result.output
    assert "partnerships" in result.output


def test_validate_rejects_broken_file(tmp_path: Path) -> None:
    path = tmp_path / "broken.json"
    path.write_text(json.dumps({"persons": {"a": {"id": "b"}}}), encoding="utf-8")

    result = runner.invoke(app, ["validate", str(path)])

    assert result.exit_code == 1
    assert "Validation failed" in result.output
