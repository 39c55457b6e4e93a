from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Tuple

import numpy as np
import typer

from ..examples.synthetic import PRESETS, generate_annotation
from ..sdk import run_session_from_config
from ..spaces import get_space

app = typer.Typer(help="Pinpoint probe kinematics utilities")
atlas_app = typer.Typer(help="Synthetic atlas helpers")
app.add_typer(atlas_app, name="atlas")


def _configure_logging(level: str) -> None:
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=numeric, format="[%(levelname)s] %(message)s")
    logging.getLogger("pinpoint").setLevel(numeric)


def _execute_echo(config: Path, output: Optional[Path], ticks: Optional[int], log_level: str) -> None:
    _configure_logging(log_level)
    if output is not None and output.suffix.lower() not in {".csv", ".npz"}:
        raise typer.BadParameter(f"Unsupported output extension '{output.suffix}'", param_hint="--output")
    try:
        result = run_session_from_config(config, output=output, ticks=ticks)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="CONFIG") from exc
    stats = result.stats
    typer.echo(
        f"Echoed {stats['echoes']} positions over {stats['ticks']} ticks "
        f"({stats['records']} records, {stats['stalls']} stalls, {stats['errors']} errors) → {result.output_path}"
    )
    for name, pose in result.poses.items():
        ap, ml, dv, yaw, pitch, roll = pose
        typer.echo(f"{name}: AP={ap:.4f} ML={ml:.4f} DV={dv:.4f} yaw={yaw:.2f} pitch={pitch:.2f} roll={roll:.2f}")


@app.command("echo")
def echo(
    config: Path = typer.Argument(..., exists=True, readable=True, help="Path to YAML session file."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Override record path (extension sets format)."),
    ticks: Optional[int] = typer.Option(None, "--ticks", min=0, help="Override number of simulation steps."),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level (e.g. INFO, DEBUG)."),
) -> None:
    """Run a simulated manipulator echo session from a YAML config."""

    _execute_echo(config, output, ticks, log_level)


@app.command("run")
def run(
    config: Path = typer.Argument(..., exists=True, readable=True, help="Path to YAML session file."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Override record path (extension sets format)."),
    ticks: Optional[int] = typer.Option(None, "--ticks", min=0, help="Override number of simulation steps."),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level (e.g. INFO, DEBUG)."),
) -> None:
    """Alias for `echo`"""

    _execute_echo(config, output, ticks, log_level)


@app.command("convert")
def convert(
    xyz: Tuple[float, float, float] = typer.Option(..., "--xyz", help="Point or vector to convert."),
    source: str = typer.Option("world", "--from", help="Source space (world, ccf, sensapex, new_scale)."),
    target: str = typer.Option("ccf", "--to", help="Target space (world, ccf, sensapex, new_scale)."),
    vector: bool = typer.Option(False, "--vector", help="Treat input as a direction (no translation)."),
) -> None:
    """Convert a coordinate between world space and a named space."""

    try:
        src = None if source.lower() == "world" else get_space(source)
        dst = None if target.lower() == "world" else get_space(target)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc

    value = np.asarray(xyz, dtype=np.float64)
    if src is not None:
        value = src.to_world_vector(value) if vector else src.to_world(value)
    if dst is not None:
        value = dst.from_world_vector(value) if vector else dst.from_world(value)
    typer.echo(" ".join(f"{v:.6f}" for v in value))


@atlas_app.command("generate")
def atlas_generate(
    output: Path = typer.Argument(..., help="Output annotation volume path (.npz)."),
    preset: str = typer.Option("ellipsoid", "--preset", help=f"Synthetic atlas preset ({', '.join(PRESETS)})."),
    resolution_mm: float = typer.Option(0.1, "--resolution-mm", help="Voxel size in millimetres."),
) -> None:
    """Generate a synthetic annotation volume for offline sessions."""

    if resolution_mm <= 0:
        raise typer.BadParameter("resolution must be positive.", param_hint="--resolution-mm")
    out = output.resolve()
    try:
        generate_annotation(preset=preset, path=out, resolution_mm=resolution_mm)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    typer.echo(f"Wrote synthetic atlas to {out}")


def main() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
