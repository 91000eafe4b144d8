from __future__ import annotations

import multiprocessing
import queue as queue_mod
from typing import Any, Dict, List, Optional

from ringfollow.errors import CollectiveError, ConfigError
from ringfollow.ring.collective import ProcessCollective, SharedRing
from ringfollow.sim.rollout import RingSimulation, RunResult
from ringfollow.utils.config import RunConfig
from ringfollow.utils.logging_utils import get_logger, rank_logger

logger = get_logger("ringfollow.distributed")


class InjectedFailure(RuntimeError):
    """Raised by a rank told to drop out of the run."""


def _worker(
    cfg: RunConfig,
    shared: SharedRing,
    rank: int,
    results: Any,
    quit_at_step: Optional[int],
    fail_at_step: Optional[int] = None,
) -> None:
    log = rank_logger(rank)
    collective = ProcessCollective(shared, rank, timeout=cfg.sim.collective_timeout)
    try:
        sim = RingSimulation(cfg, collective=collective, indices=[rank], record=(rank == 0), audit=True, logger=log)
        if fail_at_step is None:
            result = sim.run(quit_at_step=quit_at_step)
        else:
            while sim.step_number < fail_at_step:
                sim.step()
            raise InjectedFailure(f"rank {rank} dropped out at step {sim.step_number}")
    except ConfigError as exc:
        collective.abort()
        results.put((rank, None, str(exc), True))
        return
    except CollectiveError as exc:
        collective.abort()
        results.put((rank, None, str(exc), False))
        return
    except Exception as exc:
        collective.abort()
        results.put((rank, None, f"{type(exc).__name__}: {exc}", False))
        raise
    results.put((rank, result, None, False))


def run_distributed(
    cfg: RunConfig,
    start_method: str = "spawn",
    quit_requests: Optional[Dict[int, int]] = None,
    fail_requests: Optional[Dict[int, int]] = None,
) -> List[RunResult]:
    """Run one agent per OS process and return the per-rank results in rank order.

    ``quit_requests`` maps a rank to the step at which it signals termination.
    ``fail_requests`` maps a rank to the step at which it raises instead of
    contributing, to exercise dropout handling.
    Any rank failing to contribute to a gather makes the whole run fail; a
    rank that rejects its configuration makes it fail with ``ConfigError``.
    """
    n = cfg.ring.num_agents
    ctx = multiprocessing.get_context(start_method)
    shared = SharedRing.create(ctx, n)
    results = ctx.Queue()
    quit_requests = quit_requests or {}
    fail_requests = fail_requests or {}

    procs = [
        ctx.Process(
            target=_worker,
            args=(cfg, shared, rank, results, quit_requests.get(rank), fail_requests.get(rank)),
            name=f"ring-rank{rank}",
        )
        for rank in range(n)
    ]
    logger.info("launching %d ring participants (%s)", n, start_method)
    for p in procs:
        p.start()

    collected: Dict[int, RunResult] = {}
    errors: Dict[int, str] = {}
    config_errors: Dict[int, str] = {}
    try:
        while len(collected) + len(errors) < n:
            try:
                rank, result, error, is_config = results.get(timeout=1.0)
            except queue_mod.Empty:
                if not any(p.is_alive() for p in procs):
                    missing = sorted(set(range(n)) - set(collected) - set(errors))
                    raise CollectiveError(f"participants {missing} exited without reporting")
                continue
            if error is not None:
                errors[rank] = error
                if is_config:
                    config_errors[rank] = error
            else:
                collected[rank] = result
    finally:
        for p in procs:
            p.join(timeout=5.0)
            if p.is_alive():
                p.terminate()
                p.join()

    if errors:
        for rank, error in sorted(errors.items()):
            logger.error("rank %d failed: %s", rank, error)
        if config_errors:
            rank = min(config_errors)
            raise ConfigError(f"rank {rank}: {config_errors[rank]}")
        raise CollectiveError(f"distributed run failed on ranks {sorted(errors)}")
    logger.info("all %d participants finished after %d steps", n, collected[0].steps)
    return [collected[rank] for rank in range(n)]
