from __future__ import annotations

import logging
from dataclasses import replace
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError
from rich.console import Console

from adapters.filesystem.family_repository import FileSystemFamilyRepository, find_person
from adapters.layout.genealogy import GenealogyLayoutEngine
from app.config import load_settings
from domain.errors import LayoutError
from domain.models import GraphSelection
from domain.services.build_layout_model import default_selection

app = typer.Typer(no_args_is_help=True)
console = Console()


@app.command("layout")
def layout(
    input_path: Path = typer.Argument(..., help="Family JSON file."),
    focus: str = typer.Option(..., "--focus", "-f", help="Id of the focus person."),
    output: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Where to write the layout JSON."
    ),
    config_path: Optional[Path] = typer.Option(None, "--config", help="YAML settings file."),
    strict: bool = typer.Option(False, "--strict", help="Fail on layout invariant breaches."),
    select_all: bool = typer.Option(False, "--all", help="Lay out every person in the file."),
    spouse_ancestors: bool = typer.Option(
        False, "--spouse-ancestors", help="Include the ancestors of the focus person's partners."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log solver progress."),
) -> None:
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    if not input_path.exists():
        console.print(f"[red]File not found:[/] {input_path}")
        raise typer.Exit(code=1)

    try:
        settings = load_settings(config_path)
        repository = FileSystemFamilyRepository()
        data = repository.load(input_path)
        find_person(data, focus)
    except (FileNotFoundError, ValueError, LayoutError) as exc:
        console.print(f"[red]{exc}[/]")
        raise typer.Exit(code=1) from exc

    config = settings.layout.to_layout_config()
    if strict:
        config = replace(config, strict_mode=True)
    if select_all or settings.selection.select_all:
        selection = GraphSelection.everything(data)
    else:
        selection = default_selection(
            data,
            focus,
            include_spouse_ancestors=spouse_ancestors
            or settings.selection.include_spouse_ancestors,
        )

    try:
        result = GenealogyLayoutEngine(config).compute(data, focus, selection)
    except LayoutError as exc:
        console.print(f"[red]Layout failed:[/] {exc}")
        raise typer.Exit(code=1) from exc

    target_path = output or settings.output.path_for(input_path)
    repository.save_result(result, target_path)
    diagnostics = result.diagnostics
    console.print(
        f"[green]Wrote[/] {target_path}: {len(result.positions)} persons, "
        f"generations {diagnostics.generation_range[0]}..{diagnostics.generation_range[1]}, "
        f"{len(result.connections)} connections"
    )
    if not diagnostics.converged:
        console.print(f"[yellow]Solver did not converge[/] (max overlap {diagnostics.max_violation:.1f}px)")
    for error in diagnostics.errors:
        console.print(f"[yellow]{error}[/]")


@app.command("validate")
def validate(input_path: Path = typer.Argument(..., help="Family JSON file to validate.")) -> None:
    if not input_path.exists():
        console.print(f"[red]File not found:[/] {input_path}")
        raise typer.Exit(code=1)

    try:
        data = FileSystemFamilyRepository().load(input_path)
    except (ValidationError, ValueError) as exc:
        console.print(f"[red]Validation failed:[/] {exc}")
        raise typer.Exit(code=1) from exc
    console.print(
        f"[green]Valid family file:[/] {input_path} "
        f"({len(data.persons)} persons, {len(data.partnerships)} partnerships)"
    )


if __name__ == "__main__":
    app()
