"""``obake shape`` — list published images, inspect, plan and build recipes."""

from __future__ import annotations

from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from obake.config import ConfigInvalidError, ConfigNotFoundError, load_settings, resolve_images_dir
from obake.core.executor import BuildExecutor
from obake.core.pipeline import ShapeBuilder
from obake.core.recipe import RecipeError, load_shapes
from obake.core.runner import DryRunRunner
from obake.launcher.images import list_images
from obake.models.shape import ReferenceKind, Shape
from obake.models.stages import STAGE_ORDER, BuildReport, StageState

console = Console()

shape_app = typer.Typer(no_args_is_help=True, rich_markup_mode="rich")

_STATE_STYLE = {
    StageState.PASSED: "[green]passed[/green]",
    StageState.FAILED: "[bold red]failed[/bold red]",
    StageState.SKIPPED: "[dim]skipped[/dim]",
    StageState.NOT_STARTED: "[dim]-[/dim]",
    StageState.RUNNING: "[yellow]running[/yellow]",
}


def _load_recipes() -> dict[str, Shape]:
    settings = load_settings()
    try:
        return load_shapes(settings.shapes_dir)
    except RecipeError as exc:
        console.print(f"[bold red]Recipe error:[/bold red] {exc}")
        raise typer.Exit(code=1)


def _get_recipe(name: str) -> Shape:
    shapes = _load_recipes()
    if name not in shapes:
        console.print(f"[bold red]Unknown shape:[/bold red] {name}")
        if shapes:
            console.print(f"[dim]Available: {', '.join(sorted(shapes))}[/dim]")
        raise typer.Exit(code=1)
    return shapes[name]


@shape_app.command(name="list", help="List images in the images directory.")
def list_cmd() -> None:
    """List published runtime images."""
    settings = load_settings()
    try:
        images = list_images(resolve_images_dir(settings))
    except (ConfigNotFoundError, ConfigInvalidError, FileNotFoundError) as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=1)

    table = Table(title="Images")
    table.add_column("Image", style="cyan")
    table.add_column("Kind")
    table.add_column("Entrypoint")
    table.add_column("Built", style="dim")
    for image in images:
        manifest = image.manifest
        table.add_row(
            image.name,
            image.kind,
            manifest.entrypoint if manifest else "",
            manifest.built_at.strftime("%Y-%m-%d %H:%M") if manifest else "",
        )
    console.print(table)


@shape_app.command(name="show", help="Show a shape recipe.")
def show_cmd(name: str = typer.Argument(..., help="Shape name.")) -> None:
    """Summarize one recipe: pin, dependencies, steps and allow-list."""
    shape = _get_recipe(name)
    ref = shape.reference
    lines = [
        f"[bold]Version:[/bold]     {shape.version}",
        f"[bold]Source:[/bold]      {ref.url}",
        f"[bold]Pin:[/bold]         {ref.pin}"
        + (f" (tag {ref.tag})" if ref.kind == ReferenceKind.GIT and ref.tag and ref.commit else ""),
        f"[bold]Entrypoint:[/bold]  {shape.entrypoint}",
        f"[bold]Build deps:[/bold]  {', '.join(shape.build_dependencies) or '-'}",
        f"[bold]Runtime deps:[/bold] {', '.join(shape.runtime_dependencies) or '-'}",
        "[bold]Steps:[/bold]",
        *[f"  {i}. {step.name}" for i, step in enumerate(shape.build_steps, start=1)],
        "[bold]Artifacts:[/bold]",
        *[f"  {pattern}" for pattern in shape.artifacts],
    ]
    if shape.bindings:
        lines.append("[bold]Bindings:[/bold]")
        lines.extend(
            f"  {b.host_path} -> {b.target} ({b.feature or b.name})" for b in shape.bindings
        )
    if shape.fixups:
        lines.append("[bold]Fixups:[/bold]")
        lines.extend(f"  {f.kind.value} {f.path}" for f in shape.fixups)
    console.print(Panel("\n".join(lines), title=f"[cyan]{shape.name}[/cyan]", expand=False))


@shape_app.command(name="plan", help="Show the commands a build would run.")
def plan_cmd(name: str = typer.Argument(..., help="Shape name.")) -> None:
    """Dry run: list every command in order without running any."""
    shape = _get_recipe(name)
    settings = load_settings()
    executor = BuildExecutor(DryRunRunner(), install_command=settings.build_install_command)

    console.print(f"[bold]fetch[/bold] {shape.reference.url} @ {shape.reference.pin}")
    table = Table(title=f"Build plan: {shape.image_name}")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Step", style="cyan")
    table.add_column("Command")
    for index, planned in enumerate(executor.plan(shape), start=1):
        command = planned.argv[-1] if planned.argv[:2] == ["/bin/sh", "-c"] else " ".join(planned.argv)
        table.add_row(str(index), planned.step, command)
    console.print(table)
    console.print(f"[bold]select[/bold] {', '.join(shape.artifacts)}")
    if shape.runtime_dependencies:
        console.print(f"[bold]install[/bold] {', '.join(shape.runtime_dependencies)}")


def _print_reports(reports: list[BuildReport]) -> None:
    table = Table(title="Build results")
    table.add_column("Shape", style="cyan")
    for stage in STAGE_ORDER:
        table.add_column(stage.value, justify="center")
    table.add_column("Image / error")
    for report in reports:
        outcome = str(report.image_path) if report.succeeded else f"[red]{report.error}[/red]"
        table.add_row(
            f"{report.shape}-{report.version}",
            *[_STATE_STYLE[report.states[stage]] for stage in STAGE_ORDER],
            outcome,
        )
    console.print(table)


@shape_app.command(name="build", help="Build shapes into runtime images.")
def build_cmd(
    names: Optional[list[str]] = typer.Argument(None, help="Shapes to build."),
    all_shapes: bool = typer.Option(False, "--all", help="Build every recipe."),
    jobs: Optional[int] = typer.Option(
        None, "--jobs", "-j", min=1, help="Parallel builds (default: OBAKE_MAX_PARALLEL_BUILDS)."
    ),
) -> None:
    """Fetch, build, select, assemble and publish each shape."""
    recipes = _load_recipes()
    if all_shapes:
        selected = [recipes[name] for name in sorted(recipes)]
    elif names:
        unknown = [name for name in names if name not in recipes]
        if unknown:
            console.print(f"[bold red]Unknown shape:[/bold red] {', '.join(unknown)}")
            raise typer.Exit(code=1)
        selected = [recipes[name] for name in names]
    else:
        console.print("[bold red]Nothing to build:[/bold red] name shapes or pass --all")
        raise typer.Exit(code=1)

    settings = load_settings()
    try:
        builder = ShapeBuilder.from_settings(settings)
    except (ConfigNotFoundError, ConfigInvalidError) as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=1)

    if len(selected) == 1:
        reports = [builder.build(selected[0])]
    else:
        by_name = builder.build_many(selected, max_workers=jobs or settings.max_parallel_builds)
        reports = [by_name[shape.name] for shape in selected]

    _print_reports(reports)
    if not all(report.succeeded for report in reports):
        raise typer.Exit(code=1)
