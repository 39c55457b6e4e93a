from __future__ import annotations
import numpy as np
import logging
from typing import Sequence

def get_logger(name: str = "pinpoint") -> logging.Logger:
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        fmt = logging.Formatter("[%(levelname)s] %(message)s")
        handler.setFormatter(fmt)
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
    return logger

def as_vec3(v: Sequence[float] | np.ndarray) -> np.ndarray:
    arr = np.asarray(v, dtype=np.float64).reshape(-1)
    if arr.shape[0] != 3:
        raise ValueError(f"Expected a 3-vector, got shape {arr.shape}")
    return arr.copy()

def as_vec4(v: Sequence[float] | np.ndarray) -> np.ndarray:
    arr = np.asarray(v, dtype=np.float64).reshape(-1)
    if arr.shape[0] == 3:
        arr = np.append(arr, 0.0)
    if arr.shape[0] != 4:
        raise ValueError(f"Expected a 4-vector, got shape {arr.shape}")
    return arr.copy()

def normalized(v: np.ndarray, eps: float = 1e-12) -> np.ndarray:
    norm = float(np.linalg.norm(v))
    return v / max(norm, eps)
