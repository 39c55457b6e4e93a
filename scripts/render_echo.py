from __future__ import annotations

import argparse
import csv
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List

import matplotlib
import matplotlib.pyplot as plt
import numpy as np

from pinpoint.sdk import run_session_from_config

matplotlib.use("Agg")


@dataclass(frozen=True)
class ExampleSpec:
    name: str
    config_path: Path


EXAMPLES: List[ExampleSpec] = [
    ExampleSpec(name="sensapex_drift", config_path=Path("examples/configs/sensapex_drift.yaml")),
    ExampleSpec(name="new_scale_pair", config_path=Path("examples/configs/new_scale_pair.yaml")),
]

OUTPUT_DIR = Path("examples/outputs")
IMAGE_DIR = Path("examples/images")


def _ensure_dirs() -> None:
    OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
    IMAGE_DIR.mkdir(parents=True, exist_ok=True)


def run_example(spec: ExampleSpec, overwrite: bool = True) -> Path:
    out_path = OUTPUT_DIR / f"{spec.name}.csv"
    if out_path.exists() and not overwrite:
        logging.info("Skipping %s (output exists)", spec.name)
        return out_path
    result = run_session_from_config(spec.config_path, output=out_path)
    logging.info("%s: %s", spec.name, result.stats)
    return out_path


def _load_records(path: Path) -> dict:
    ext = path.suffix.lower()
    if ext == ".npz":
        with np.load(path) as data:
            return {k: data[k] for k in ("timestamp", "manipulator_id", "tip_world")}
    if ext == ".csv":
        with path.open("r", encoding="utf-8", newline="") as fh:
            rows = list(csv.DictReader(fh))
        return {
            "timestamp": np.array([float(r["timestamp"]) for r in rows]),
            "manipulator_id": np.array([r["manipulator_id"] for r in rows]),
            "tip_world": np.array([[float(r["tip_x"]), float(r["tip_y"]), float(r["tip_z"])] for r in rows]).reshape(-1, 3),
        }
    raise ValueError(f"Unsupported record format for rendering: {path}")


def render_tips(name: str, records: dict) -> Path:
    tips = records["tip_world"]
    if tips.size == 0:
        raise ValueError(f"No records to render for {name}")
    t = records["timestamp"]
    ids = records["manipulator_id"]

    fig = plt.figure(figsize=(8, 6), dpi=150)
    ax_top = fig.add_subplot(2, 1, 1)
    ax_side = fig.add_subplot(2, 1, 2)
    for mid in np.unique(ids):
        sel = ids == mid
        ax_top.plot(tips[sel, 0], tips[sel, 2], marker=".", ms=2, label=str(mid))
        ax_side.plot(t[sel], tips[sel, 1], marker=".", ms=2, label=str(mid))
    ax_top.set_title(f"{name.replace('_', ' ').title()}: tip, top-down")
    ax_top.set_xlabel("ML (x) [mm]")
    ax_top.set_ylabel("AP (z) [mm]")
    ax_top.set_aspect("equal", adjustable="datalim")
    ax_top.legend(loc="best", fontsize="small")
    ax_side.set_title("Tip height over time")
    ax_side.set_xlabel("t [s]")
    ax_side.set_ylabel("y [mm]")

    fig.tight_layout()
    out_path = IMAGE_DIR / f"{name}.png"
    fig.savefig(out_path)
    plt.close(fig)
    return out_path


def generate_examples(names: List[str], overwrite_outputs: bool) -> None:
    _ensure_dirs()
    selected = EXAMPLES if not names else [spec for spec in EXAMPLES if spec.name in names]
    if not selected:
        raise ValueError("No matching examples selected.")
    for spec in selected:
        logging.info("Running example '%s'", spec.name)
        out_path = run_example(spec, overwrite=overwrite_outputs)
        if not out_path.exists():
            logging.warning("Output %s missing, skipping render", out_path)
            continue
        records = _load_records(out_path)
        if records["tip_world"].size == 0:
            logging.warning("No records for %s, skipping image", spec.name)
            continue
        image_path = render_tips(spec.name, records)
        logging.info("Saved %s", image_path)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run Pinpoint example sessions and plot their echo records.")
    parser.add_argument("--example", "-e", action="append", help="Example name to run (default: all).")
    parser.add_argument("--no-overwrite", action="store_true", help="Skip running sessions whose records already exist.")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO).")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO), format="[%(levelname)s] %(message)s")
    generate_examples(args.example or [], overwrite_outputs=not args.no_overwrite)


if __name__ == "__main__":
    main()
