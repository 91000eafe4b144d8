from __future__ import annotations

import argparse
from dataclasses import asdict

from ringfollow.io.writer import OutputWriter
from ringfollow.sim.distributed import run_distributed
from ringfollow.sim.rollout import RingSimulation
from ringfollow.utils.config import AppConfig, build_run_config
from ringfollow.utils.logging_utils import get_logger

logger = get_logger("ringfollow.tools")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run IDM car-following agents around a ring")
    parser.add_argument("--config", required=True, action="append", help="YAML file; repeat to merge overrides")
    parser.add_argument("--output", required=False)
    parser.add_argument("--run_name", required=False)
    parser.add_argument("--distributed", action="store_true", help="one OS process per agent")
    parser.add_argument("--num_agents", type=int, required=False)
    parser.add_argument("--end_time", type=float, required=False)
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    app = AppConfig.from_files(*args.config)
    raw = app.raw
    if args.num_agents is not None:
        raw.setdefault("ring", {})["num_agents"] = args.num_agents
    if args.end_time is not None:
        raw.setdefault("sim", {})["end_time"] = args.end_time
    cfg = build_run_config(raw)
    if args.output:
        cfg.output.root = args.output
    if args.run_name:
        cfg.output.run_name = args.run_name

    if args.distributed:
        results = run_distributed(cfg)
        frames = results[0].frames
        result = results[0]
        traveled = {rank: r.traveled[rank] for rank, r in enumerate(results)}
    else:
        result = RingSimulation(cfg).run()
        frames = result.frames
        traveled = result.traveled

    if cfg.output.root:
        meta = {
            "run_name": cfg.output.run_name,
            "distributed": args.distributed,
            "steps": result.steps,
            "time": result.time,
            "quit": result.quit,
            "ring": asdict(cfg.ring),
            "sim": asdict(cfg.sim),
            "behaviors": [asdict(b) for b in cfg.behaviors],
            "traveled": {str(k): v for k, v in traveled.items()},
        }
        run_dir = OutputWriter(cfg.output.root).write_run(cfg.output.run_name, frames, meta)
        logger.info("wrote telemetry to %s", run_dir)

    print(
        f"Finished {result.steps} steps (t={result.time:.2f}s), "
        f"mean distance traveled={sum(traveled.values()) / len(traveled):.1f} m"
    )


if __name__ == "__main__":
    main()
