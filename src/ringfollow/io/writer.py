from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Sequence

import pandas as pd

from ringfollow.sim.rollout import TelemetryFrame


def frames_to_dataframe(frames: Sequence[TelemetryFrame]) -> pd.DataFrame:
    """One row per recorded step, columns ``time, x_j, y_j, speed_j, desired_j``."""
    rows: List[Dict[str, Any]] = []
    for frame in frames:
        row: Dict[str, Any] = {"time": frame.t, "step": frame.step}
        for j, ((x, y), speed) in enumerate(zip(frame.positions, frame.speeds)):
            row[f"x_{j}"] = x
            row[f"y_{j}"] = y
            row[f"speed_{j}"] = speed
            row[f"desired_{j}"] = frame.desired.get(j, float("nan"))
        rows.append(row)
    return pd.DataFrame(rows)


class OutputWriter:
    def __init__(self, output_root: str) -> None:
        self.output_root = Path(output_root)

    def write_run(self, run_name: str, frames: Sequence[TelemetryFrame], meta: Dict[str, Any]) -> Path:
        run_dir = self.output_root / "runs" / run_name
        run_dir.mkdir(parents=True, exist_ok=True)

        with open(run_dir / "meta.json", "w", encoding="utf-8") as f:
            json.dump(meta, f, ensure_ascii=False, indent=2)

        frames_to_dataframe(frames).to_csv(run_dir / "telemetry.csv", index=False)
        return run_dir
