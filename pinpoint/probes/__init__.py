from .insertion import MAX_PITCH, MIN_PITCH, ProbeInsertion
from .controller import ProbeController, SurfaceState, TipFrame

__all__ = ["MAX_PITCH", "MIN_PITCH", "ProbeInsertion", "ProbeController", "SurfaceState", "TipFrame"]
