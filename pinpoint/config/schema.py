from __future__ import annotations

from pathlib import Path
from typing import Annotated, List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, Field, model_validator


class SimulatedManipulatorConfig(BaseModel):
    id: str
    position: tuple[float, float, float, float] = (0.0, 0.0, 0.0, 0.0)
    drift_mm_s: tuple[float, float, float, float] = (0.0, 0.0, 0.0, 0.0)
    calibrated: bool = False


class SimulatedLinkConfig(BaseModel):
    kind: Literal["simulated"] = "simulated"
    manipulator_type: Literal["sensapex", "new_scale"] = "sensapex"
    num_axes: int = 4
    manipulators: List[SimulatedManipulatorConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_ids(self) -> "SimulatedLinkConfig":
        ids = [m.id for m in self.manipulators]
        if len(ids) != len(set(ids)):
            raise ValueError("Simulated manipulator ids must be unique")
        return self


class EchoConfig(BaseModel):
    log_rate_hz: float = Field(10.0, gt=0)
    hysteresis: float = Field(1e-4, ge=0)
    request_timeout_s: float = Field(2.0, gt=0)
    movement_speed: float = Field(500.0, gt=0)


class FileAtlasConfig(BaseModel):
    kind: Literal["file"]
    path: Path
    resolution_mm: Optional[float] = None


class SyntheticAtlasConfig(BaseModel):
    kind: Literal["synthetic"]
    preset: Literal["ellipsoid", "slab", "layered"] = "ellipsoid"
    dimensions_mm: tuple[float, float, float] = (13.2, 11.4, 8.0)
    resolution_mm: float = Field(0.1, gt=0)


AtlasSourceConfig = Annotated[
    Union[FileAtlasConfig, SyntheticAtlasConfig],
    Field(discriminator="kind"),
]


class NullTransformConfig(BaseModel):
    kind: Literal["null"] = "null"


class LinearTransformConfig(BaseModel):
    kind: Literal["linear"]
    name: str = "linear"
    prefix: str = ""
    scaling: tuple[float, float, float] = (1.0, 1.0, 1.0)
    tilt_deg: float = 0.0
    origin: tuple[float, float, float] = (0.0, 0.0, 0.0)

    @model_validator(mode="after")
    def _nonzero_scaling(self) -> "LinearTransformConfig":
        if any(s == 0 for s in self.scaling):
            raise ValueError("transform scaling components must be non-zero")
        return self


AtlasTransformConfig = Annotated[
    Union[NullTransformConfig, LinearTransformConfig],
    Field(discriminator="kind"),
]


class AtlasConfig(BaseModel):
    source: Optional[AtlasSourceConfig] = None
    transform: AtlasTransformConfig = NullTransformConfig()


class ProbeConfig(BaseModel):
    name: Optional[str] = None
    apmldv: tuple[float, float, float] = (0.0, 0.0, 0.0)
    angles: tuple[float, float, float] = (0.0, 90.0, 0.0)
    manipulator_id: Optional[str] = None
    right_handed: bool = False
    calibrated: Optional[bool] = None
    zero_coordinate_offset: Optional[tuple[float, float, float, float]] = None
    brain_surface_offset: float = 0.0
    drop_to_surface_with_depth: bool = True


class SessionConfig(BaseModel):
    ticks: int = Field(100, ge=0)
    dt_s: float = Field(0.02, gt=0)


class OutputConfig(BaseModel):
    path: Path
    format: Literal["csv", "npz"] = "csv"


class SessionFileConfig(BaseModel):
    link: SimulatedLinkConfig = SimulatedLinkConfig()
    echo: EchoConfig = EchoConfig()
    atlas: AtlasConfig = AtlasConfig()
    probes: List[ProbeConfig] = Field(default_factory=list)
    session: SessionConfig = SessionConfig()
    output: OutputConfig

    @model_validator(mode="after")
    def _check_bindings(self) -> "SessionFileConfig":
        if not self.probes:
            raise ValueError("Session requires at least one probe")
        known = {m.id for m in self.link.manipulators}
        bound = [p.manipulator_id for p in self.probes if p.manipulator_id is not None]
        if len(bound) != len(set(bound)):
            raise ValueError("A manipulator can drive only one probe")
        missing = [mid for mid in bound if mid not in known]
        if missing:
            raise ValueError(f"Probes reference unknown manipulators: {missing}")
        for i, probe in enumerate(self.probes):
            if probe.name is None:
                probe.name = f"probe{i}"
        return self


def load_config(path: str | Path) -> SessionFileConfig:
    path = Path(path)
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise ValueError("Configuration root must be a mapping.")
    cfg = SessionFileConfig.model_validate(data)
    cfg.output.path = (path.parent / cfg.output.path).resolve()
    source = cfg.atlas.source
    if isinstance(source, FileAtlasConfig) and not source.path.is_absolute():
        source.path = (path.parent / source.path).resolve()
    return cfg
