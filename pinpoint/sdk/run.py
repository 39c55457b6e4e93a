from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from ..config import SessionFileConfig, load_config
from ..core.errors import LinkError
from ..core.utils import get_logger
from ..runtime.builders import (
    build_atlas,
    build_atlas_transform,
    build_binding,
    build_controller,
    build_link,
    build_writer,
)

_log = get_logger()


class SessionClock:
    """Simulated time source shared by the link and every binding."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def advance(self, dt: float) -> float:
        self.now += float(dt)
        return self.now


@dataclass(frozen=True)
class SessionResult:
    """Summary of an echo session driven by a configuration file."""

    stats: Dict[str, int]
    output_path: Path
    config: SessionFileConfig
    poses: Dict[str, Tuple[float, ...]]
    errors: Tuple[LinkError, ...] = ()


def run_session_from_config(
    config: Union[str, Path, SessionFileConfig],
    *,
    output: Optional[Path] = None,
    ticks: Optional[int] = None,
) -> SessionResult:
    """Run a simulated manipulator session described by a configuration.

    Parameters
    ----------
    config:
        Path to a YAML file or a pre-loaded :class:`~pinpoint.config.schema.SessionFileConfig`.
    output:
        Optional override for the echo record file. The extension drives the
        format (``.csv`` or ``.npz``).
    ticks:
        Optional override for the number of simulation steps.

    Returns
    -------
    SessionResult
        Counters for the run, the resolved output path, the resolved
        configuration, the final ``(AP, ML, DV, yaw, pitch, roll)`` of each
        probe, and every error reported through the bindings.
    """

    cfg = load_config(config) if not isinstance(config, SessionFileConfig) else config.model_copy(deep=True)

    if output is not None:
        out_path = Path(output).resolve()
        ext = out_path.suffix.lower()
        if ext not in {".csv", ".npz"}:
            raise ValueError(f"Unsupported output extension '{ext}'")
        cfg.output.path = out_path
        cfg.output.format = ext.lstrip(".")
    else:
        cfg.output.path = Path(cfg.output.path).resolve()
    cfg.output.path.parent.mkdir(parents=True, exist_ok=True)
    if ticks is not None:
        if ticks < 0:
            raise ValueError("ticks must be non-negative")
        cfg.session.ticks = int(ticks)

    clock = SessionClock()
    dataset = build_atlas(cfg)
    transform = build_atlas_transform(cfg)
    link = build_link(cfg, clock)
    writer = build_writer(cfg)
    errors: List[LinkError] = []

    controllers = {}
    bindings = []
    for probe_cfg in cfg.probes:
        controller = build_controller(probe_cfg, dataset, transform)
        controllers[probe_cfg.name] = controller
        if probe_cfg.manipulator_id is None:
            continue
        binding = build_binding(cfg, probe_cfg, controller, link, clock, record_sink=writer)
        calibrated = probe_cfg.calibrated
        if calibrated is None:
            calibrated = link.manipulator(probe_cfg.manipulator_id).calibrated
        binding.initialize(probe_cfg.manipulator_id, calibrated, on_error=errors.append)
        bindings.append(binding)

    _log.info(
        "Running %d ticks with %d probe(s), %d bound to manipulators",
        cfg.session.ticks, len(controllers), len(bindings),
    )
    dt = cfg.session.dt_s
    try:
        for _ in range(cfg.session.ticks):
            clock.advance(dt)
            link.advance(dt)
            link.pump()
            for binding in bindings:
                binding.tick()
            for controller in controllers.values():
                controller.tick()
    finally:
        for binding in bindings:
            binding.disable()
        link.pump()
        writer.close()

    stats = {
        "ticks": cfg.session.ticks,
        "probes": len(controllers),
        "bound": len(bindings),
        "echoes": sum(b.echo_count for b in bindings),
        "records": writer.count,
        "stalls": sum(b.stall_count for b in bindings),
        "errors": len(errors),
    }
    poses = {
        name: tuple(float(v) for v in (*c.insertion.apmldv, *c.insertion.angles))
        for name, c in controllers.items()
    }
    return SessionResult(
        stats=stats,
        output_path=Path(cfg.output.path),
        config=cfg,
        poses=poses,
        errors=tuple(errors),
    )
