from __future__ import annotations

from typing import Callable, Optional

from ..atlas import AnnotationDataset, load_annotation
from ..config import SessionFileConfig
from ..config.schema import ProbeConfig
from ..core.recorder import build_record_writer
from ..examples.synthetic import make_annotation
from ..manipulators import ManipulatorBinding, SimulatedManipulator, SimulatedManipulatorLink
from ..probes import ProbeController, ProbeInsertion
from ..spaces import get_space
from ..transforms import AtlasTransform, LinearAtlasTransform, NullTransform


def build_atlas(cfg: SessionFileConfig) -> Optional[AnnotationDataset]:
    source = cfg.atlas.source
    if source is None:
        return None
    if source.kind == "file":
        return load_annotation(source.path, source.resolution_mm)
    if source.kind == "synthetic":
        data = make_annotation(source.preset, source.dimensions_mm, source.resolution_mm)
        return AnnotationDataset(data, source.resolution_mm)
    raise ValueError(f"Unsupported atlas source: {source.kind}")


def build_atlas_transform(cfg: SessionFileConfig) -> AtlasTransform:
    t_cfg = cfg.atlas.transform
    if t_cfg.kind == "null":
        return NullTransform()
    if t_cfg.kind == "linear":
        return LinearAtlasTransform(
            t_cfg.name,
            scaling=t_cfg.scaling,
            tilt_deg=t_cfg.tilt_deg,
            origin=t_cfg.origin,
            prefix=t_cfg.prefix,
        )
    raise ValueError(f"Unsupported atlas transform: {t_cfg.kind}")


def build_link(cfg: SessionFileConfig, clock: Callable[[], float]) -> SimulatedManipulatorLink:
    link_cfg = cfg.link
    if link_cfg.kind != "simulated":
        raise ValueError(f"Unsupported link kind: {link_cfg.kind}")
    manipulators = [
        SimulatedManipulator(
            id=m.id,
            position=m.position,
            velocity=m.drift_mm_s,
            calibrated=m.calibrated,
        )
        for m in link_cfg.manipulators
    ]
    return SimulatedManipulatorLink(
        manipulators,
        manipulator_type=link_cfg.manipulator_type,
        num_axes=link_cfg.num_axes,
        clock=clock,
    )


def build_controller(
    probe_cfg: ProbeConfig,
    dataset: Optional[AnnotationDataset],
    transform: AtlasTransform,
) -> ProbeController:
    # the insertion must share the dataset's space so surface lookups line up
    space = dataset.coordinate_space if dataset is not None else get_space("ccf")
    insertion = ProbeInsertion(probe_cfg.apmldv, probe_cfg.angles, space=space, transform=transform)
    return ProbeController(insertion, dataset)


def build_binding(
    cfg: SessionFileConfig,
    probe_cfg: ProbeConfig,
    controller: ProbeController,
    link: SimulatedManipulatorLink,
    clock: Callable[[], float],
    record_sink=None,
) -> ManipulatorBinding:
    echo = cfg.echo
    binding = ManipulatorBinding(
        controller,
        link,
        clock=clock,
        log_rate_hz=echo.log_rate_hz,
        hysteresis=echo.hysteresis,
        request_timeout_s=echo.request_timeout_s,
        movement_speed=echo.movement_speed,
        record_sink=record_sink,
        right_handed=probe_cfg.right_handed,
    )
    if probe_cfg.zero_coordinate_offset is not None:
        binding.zero_coordinate_offset = probe_cfg.zero_coordinate_offset
    # mode first: it is frozen once a non-zero offset is set
    binding.drop_to_surface_with_depth = probe_cfg.drop_to_surface_with_depth
    binding.brain_surface_offset = probe_cfg.brain_surface_offset
    return binding


def build_writer(cfg: SessionFileConfig):
    out_cfg = cfg.output
    return build_record_writer(str(out_cfg.path), out_cfg.format)
