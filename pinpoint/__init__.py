"""Pinpoint – probe insertion kinematics and manipulator echo core.

This package contains the pieces needed to keep a planned probe insertion in
step with a physical manipulator:
- Coordinate spaces and their world maps (spaces)
- Manipulator affine transforms and atlas transforms (transforms)
- ProbeInsertion pose value and ProbeController (probes)
- Annotation volume with brain-surface search (atlas)
- Hardware link contract, simulated link and the echo binding (manipulators)
- Echo record sinks (core.recorder)
"""

from .spaces import CoordinateSpace, CCFSpace, NewScaleSpace, SensapexSpace, get_space
from .transforms import (
    AffineTransform,
    SensapexLeftTransform, SensapexRightTransform,
    NewScaleLeftTransform, NewScaleRightTransform,
    AtlasTransform, NullTransform, LinearAtlasTransform,
)
from .probes import ProbeInsertion, ProbeController
from .atlas import AnnotationDataset, load_annotation
from .manipulators import (
    EchoState, ManipulatorBinding, ManipulatorLink,
    SimulatedManipulator, SimulatedManipulatorLink,
)
from .core.errors import ErrorKind, LinkError, PinpointError
from .core.recorder import EchoRecord, CsvRecordWriter, NpzRecordWriter, MemoryRecordSink
