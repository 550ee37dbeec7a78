# engine/pool.py
"""
Execution pool for Monte Carlo batches.

A batch is split into chunks of trial indices and fanned out over a
ProcessPoolExecutor. Every trial seeds itself from (base seed, trial index),
so which worker runs which chunk never changes the numbers. Results are
collected as chunks finish and put back in trial order before aggregation.

Failure handling:
- configuration errors are raised before anything is dispatched;
- an exception inside one trial drops that trial (logged, counted by type);
- a worker process that dies breaks the executor; the chunks it took down
  are re-run one process each, and only the chunk that kills its own
  process is dropped (reason "BrokenProcessPool");
- on timeout or cancellation, chunks that are not finished are counted as
  cancelled and whatever already finished is still aggregated.
"""

import logging
import multiprocessing as mp
import time
from collections import Counter
from concurrent.futures import FIRST_COMPLETED, Future, ProcessPoolExecutor, wait
from concurrent.futures.process import BrokenProcessPool
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from config.engine_settings import (
    CHUNKS_PER_WORKER,
    DEFAULT_RUNS,
    DEFAULT_TIMEOUT,
    DEFAULT_WORKERS,
    POLL_INTERVAL,
    START_METHOD,
)
from engine.aggregator import TrialOutcome, summarize
from engine.errors import SimulationConfigError
from engine.simulator import ScenarioSimulator
from models import AggregateResult, SimulationParams
from utils.input_adapter import params_from_dict

logger = logging.getLogger(__name__)

SCORE = "score"
BANDS = "bands"
MODES = (SCORE, BANDS)


# =============================================================================
# Tasks
# =============================================================================

@dataclass(frozen=True)
class ScoreTask:
    params: SimulationParams
    runs: int = DEFAULT_RUNS
    seed: Optional[int] = None
    kind: ClassVar[str] = SCORE


@dataclass(frozen=True)
class BandsTask:
    params: SimulationParams
    runs: int = DEFAULT_RUNS
    seed: Optional[int] = None
    kind: ClassVar[str] = BANDS


Task = Union[ScoreTask, BandsTask]
TASK_TYPES = {SCORE: ScoreTask, BANDS: BandsTask}


def _require_count(name: str, value: Any) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or value < 1:
        raise SimulationConfigError(f"{name} must be a positive integer, got {value!r}")
    return value


def _require_seed(value: Any) -> Optional[int]:
    if value is None:
        return None
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise SimulationConfigError(f"seed must be a non-negative integer, got {value!r}")
    return value


def task_from_envelope(message: Mapping[str, Any]) -> Task:
    """
    Parses a wire-form task message into a ScoreTask or BandsTask.

    Accepts {kind, params, runs, seed?}. The older {type, simulationCount}
    spelling is normalised to the same thing. `params` may be a
    SimulationParams or a plain dict (see utils.input_adapter).
    """
    kind = message.get("kind", message.get("type"))
    if kind not in TASK_TYPES:
        raise SimulationConfigError(f"unknown task kind {kind!r}; expected one of {MODES}")

    runs = message.get("runs", message.get("simulationCount", DEFAULT_RUNS))
    params = message.get("params")
    if isinstance(params, Mapping):
        params = params_from_dict(params)
    if not isinstance(params, SimulationParams):
        raise SimulationConfigError("task envelope needs 'params'")

    return TASK_TYPES[kind](params=params, runs=_require_count("runs", runs), seed=_require_seed(message.get("seed")))


def resolve_seed(seed: Optional[int], params: SimulationParams) -> int:
    """Explicit seed, else the params' seed, else fresh OS entropy."""
    if seed is not None:
        return _require_seed(seed)
    if params.random_seed is not None:
        return params.random_seed
    return int(np.random.SeedSequence().entropy)


# =============================================================================
# Worker side
# =============================================================================

@dataclass
class ChunkResult:
    outcomes: List[TrialOutcome] = field(default_factory=list)
    failures: List[Tuple[int, str]] = field(default_factory=list)


def _run_chunk(
    simulator: ScenarioSimulator,
    base_seed: int,
    trial_indices: Sequence[int],
    keep_paths: bool,
) -> ChunkResult:
    """Runs a block of trials; one bad trial is recorded and skipped."""
    result = ChunkResult()
    for trial_index in trial_indices:
        try:
            scenario = simulator.run(trial_index, base_seed)
        except Exception as exc:
            logger.warning(f"Trial {trial_index} dropped: {type(exc).__name__}: {exc}")
            result.failures.append((trial_index, type(exc).__name__))
            continue
        result.outcomes.append(TrialOutcome.from_scenario(scenario, keep_paths))
    logger.debug(f"Chunk {trial_indices[0]}..{trial_indices[-1]} done, {len(result.failures)} dropped")
    return result


def chunk_trials(runs: int, workers: int) -> List[List[int]]:
    """Contiguous blocks of trial indices, about CHUNKS_PER_WORKER per worker."""
    n_chunks = max(1, min(runs, workers * CHUNKS_PER_WORKER))
    return [[int(i) for i in block] for block in np.array_split(np.arange(runs), n_chunks) if len(block)]


# =============================================================================
# Collector
# =============================================================================

@dataclass
class _Collected:
    outcomes: List[TrialOutcome] = field(default_factory=list)
    dropped: Counter = field(default_factory=Counter)
    cancelled: int = 0

    def add(self, chunk_result: ChunkResult) -> None:
        self.outcomes.extend(chunk_result.outcomes)
        self.dropped.update(reason for _, reason in chunk_result.failures)


def _should_stop(deadline: Optional[float], cancel_event) -> bool:
    if cancel_event is not None and cancel_event.is_set():
        return True
    return deadline is not None and time.monotonic() >= deadline


def _poll_wait(deadline: Optional[float]) -> float:
    if deadline is None:
        return POLL_INTERVAL
    return max(0.0, min(POLL_INTERVAL, deadline - time.monotonic()))


def _run_in_process(simulator, base_seed, chunks, keep_paths, deadline, cancel_event) -> _Collected:
    collected = _Collected()
    for chunk in chunks:
        if _should_stop(deadline, cancel_event):
            collected.cancelled += len(chunk)
            continue
        collected.add(_run_chunk(simulator, base_seed, chunk, keep_paths))
    return collected


def _take(future: Future, chunk: Sequence[int], collected: _Collected) -> None:
    """Collects a finished chunk; a chunk that raised loses all its trials."""
    try:
        chunk_result = future.result()
    except Exception as exc:
        logger.warning(f"Chunk of {len(chunk)} trials lost: {type(exc).__name__}: {exc}")
        collected.dropped[type(exc).__name__] += len(chunk)
        return
    collected.add(chunk_result)


def _is_broken(future: Future) -> bool:
    return not future.cancelled() and isinstance(future.exception(), BrokenProcessPool)


def _run_shared(simulator, base_seed, chunks, keep_paths, workers, ctx, deadline, cancel_event, collected) -> List:
    """
    Fans every chunk out over one executor.

    Returns the chunks orphaned by a dead worker process. When a worker dies
    the executor fails everything it still held, so those chunks cannot be
    told apart from the one that crashed.
    """
    executor = ProcessPoolExecutor(max_workers=workers, mp_context=ctx)
    pending: Dict[Future, Sequence[int]] = {
        executor.submit(_run_chunk, simulator, base_seed, chunk, keep_paths): chunk for chunk in chunks
    }
    orphaned = []
    try:
        while pending:
            if _should_stop(deadline, cancel_event):
                logger.warning("Batch stopped early (timeout or cancellation)")
                break
            done, _ = wait(pending, timeout=_poll_wait(deadline), return_when=FIRST_COMPLETED)
            for future in done:
                chunk = pending.pop(future)
                if _is_broken(future):
                    orphaned.append(chunk)
                else:
                    _take(future, chunk, collected)
    finally:
        # queued chunks are dropped; chunks already running finish in the background and are ignored
        executor.shutdown(wait=False, cancel_futures=True)

    for future, chunk in pending.items():
        # chunks that finished before the stop are still good
        if future.done() and not future.cancelled() and not _is_broken(future):
            _take(future, chunk, collected)
        else:
            collected.cancelled += len(chunk)
    return orphaned


def _run_isolated(simulator, base_seed, chunks, keep_paths, workers, ctx, deadline, cancel_event, collected) -> None:
    """
    Re-runs orphaned chunks, each in a single-process executor of its own and
    at most `workers` at a time. A chunk whose process dies here is the one
    that crashes; its trials are dropped as BrokenProcessPool.
    """
    queue = list(chunks)
    running: Dict[Future, Tuple[Sequence[int], ProcessPoolExecutor]] = {}
    try:
        while queue or running:
            if _should_stop(deadline, cancel_event):
                logger.warning("Batch stopped early (timeout or cancellation)")
                break
            while queue and len(running) < workers:
                chunk = queue.pop(0)
                executor = ProcessPoolExecutor(max_workers=1, mp_context=ctx)
                running[executor.submit(_run_chunk, simulator, base_seed, chunk, keep_paths)] = (chunk, executor)
            done, _ = wait(running, timeout=_poll_wait(deadline), return_when=FIRST_COMPLETED)
            for future in done:
                chunk, executor = running.pop(future)
                executor.shutdown(wait=False)
                _take(future, chunk, collected)
    finally:
        for future, (chunk, executor) in running.items():
            executor.shutdown(wait=False, cancel_futures=True)
            if future.done() and not future.cancelled():
                _take(future, chunk, collected)
            else:
                collected.cancelled += len(chunk)
        collected.cancelled += sum(len(chunk) for chunk in queue)


def _run_in_pool(simulator, base_seed, chunks, keep_paths, workers, deadline, cancel_event) -> _Collected:
    collected = _Collected()
    ctx = mp.get_context(START_METHOD)

    orphaned = _run_shared(simulator, base_seed, chunks, keep_paths, workers, ctx, deadline, cancel_event, collected)
    if orphaned:
        logger.warning(
            f"A worker process died; re-running {len(orphaned)} chunk(s) one process each to isolate it"
        )
        _run_isolated(simulator, base_seed, orphaned, keep_paths, workers, ctx, deadline, cancel_event, collected)
    return collected


# =============================================================================
# Entry points
# =============================================================================

def run_monte_carlo(
    params: SimulationParams,
    runs: int = DEFAULT_RUNS,
    mode: str = SCORE,
    seed: Optional[int] = None,
    workers: Optional[int] = None,
    timeout: Optional[float] = DEFAULT_TIMEOUT,
    cancel_event=None,
) -> AggregateResult:
    """
    Runs `runs` trials of `params` and aggregates them.

    Args:
        params: the scenario, shared read-only by every trial.
        runs: number of trials requested.
        mode: "score" (scalars only) or "bands" (also per-year percentile bands).
        seed: base seed; falls back to params.random_seed, then to OS entropy.
        workers: pool size; 1 runs everything in this process.
        timeout: seconds before unfinished chunks are cancelled; None waits.
        cancel_event: anything with is_set(), e.g. threading.Event or mp.Event.

    Raises:
        SimulationConfigError: bad mode/runs/workers, bad correlation matrix,
            missing tax tables. Nothing is run in that case.
    """
    if mode not in MODES:
        raise SimulationConfigError(f"mode must be one of {MODES}, got {mode!r}")
    runs = _require_count("runs", runs)
    workers = _require_count("workers", DEFAULT_WORKERS if workers is None else workers)
    if timeout is not None and timeout < 0:
        raise SimulationConfigError(f"timeout must be >= 0, got {timeout!r}")
    base_seed = resolve_seed(seed, params)

    # factor the covariance and load tax tables once; config errors surface here
    simulator = ScenarioSimulator(params)

    chunks = chunk_trials(runs, workers)
    keep_paths = mode == BANDS
    deadline = time.monotonic() + timeout if timeout is not None else None
    logger.info(f"Running {runs} trials ({mode}) on {workers} worker(s) in {len(chunks)} chunk(s), seed={base_seed}")

    started = time.perf_counter()
    if workers == 1:
        collected = _run_in_process(simulator, base_seed, chunks, keep_paths, deadline, cancel_event)
    else:
        collected = _run_in_pool(simulator, base_seed, chunks, keep_paths, workers, deadline, cancel_event)

    result = summarize(
        collected.outcomes,
        mode=mode,
        seed=base_seed,
        requested_trials=runs,
        start_age=params.persons[0].current_age,
        dropped_reasons=collected.dropped,
        cancelled_trials=collected.cancelled,
    )
    if result.dropped_trials:
        logger.warning(f"{result.dropped_trials} trial(s) dropped: {result.dropped_reasons}")
    if result.cancelled_trials:
        logger.warning(f"{result.cancelled_trials} trial(s) cancelled before completion")
    logger.info(
        f"Finished {result.completed_trials}/{runs} trials in {time.perf_counter() - started:.2f}s: "
        f"success={result.probability_of_success:.1%}, median ending={result.median_ending_balance:,.0f}"
    )
    return result


def execute_task(
    task: Task,
    workers: Optional[int] = None,
    timeout: Optional[float] = DEFAULT_TIMEOUT,
    cancel_event=None,
) -> AggregateResult:
    if not isinstance(task, (ScoreTask, BandsTask)):
        raise SimulationConfigError(f"unsupported task type {type(task).__name__}")
    return run_monte_carlo(
        task.params,
        runs=task.runs,
        mode=task.kind,
        seed=task.seed,
        workers=workers,
        timeout=timeout,
        cancel_event=cancel_event,
    )


def handle_envelope(message: Mapping[str, Any], **pool_options) -> dict:
    """Wire in, wire out: task envelope -> result envelope."""
    return execute_task(task_from_envelope(message), **pool_options).to_envelope()
