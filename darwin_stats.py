#!/usr/bin/env python3
"""
Batch statistics for the Darwin color mixing simulation.

Runs many independent headless simulations back to back and reports how many
rounds it took each grid to turn monochrome.

Usage:
  python3 darwin_stats.py                    # 1000 runs on a 10x10 grid
  python3 darwin_stats.py -n 100000          # the big one
  python3 darwin_stats.py --csv rounds.csv   # one row per run
"""

from __future__ import annotations

import argparse
import time
from typing import IO

import numpy as np

from darwin import (
    COLS,
    ROWS,
    ConfigError,
    MixingEngine,
    Simulation,
    StepLimitExceeded,
    logger,
    setup_logging,
)

CSV_HEADER = "run,rounds\n"
CAPPED = -1  # round count recorded for a run stopped by --max-steps


def run_batch(
    runs: int,
    rows: int = ROWS,
    cols: int = COLS,
    seed: int | None = None,
    max_steps: int | None = None,
    csv_fh: IO[str] | None = None,
    progress_every: int = 0,
) -> np.ndarray:
    """
    Run ``runs`` simulations to completion and return their round counts.

    A run that is still mixing after ``max_steps`` rounds is recorded as
    CAPPED and the batch carries on.
    """
    if runs <= 0:
        raise ConfigError(f"need at least one run, got {runs}")
    if max_steps is not None and max_steps <= 0:
        raise ConfigError(f"max steps must be positive, got {max_steps}")

    # one independent stream per run, all derived from the batch seed
    streams = np.random.SeedSequence(seed).spawn(runs)
    rounds = np.empty(runs, dtype=np.int64)

    if csv_fh is not None:
        csv_fh.write(CSV_HEADER)

    t0 = time.perf_counter()
    for i, ss in enumerate(streams):
        engine = MixingEngine(rng=np.random.default_rng(ss))
        sim = Simulation(rows, cols, interval=0.0, engine=engine)
        try:
            rounds[i] = sim.run_to_completion(max_steps=max_steps)
        except StepLimitExceeded as e:
            logger.warning("run %d: %s", i, e)
            rounds[i] = CAPPED

        if csv_fh is not None:
            csv_fh.write(f"{i},{rounds[i]}\n")

        if progress_every and (i + 1) % progress_every == 0:
            dt = time.perf_counter() - t0
            done = rounds[:i + 1]
            finished = done[done != CAPPED]
            mean = f"{finished.mean():.1f}" if finished.size else "-"
            print(f"  run {i + 1}/{runs}  "
                  f"{(i + 1) / dt:.1f} runs/s  "
                  f"mean {mean} rounds  "
                  f"capped {done.size - finished.size}")

    logger.info("batch of %d runs on %dx%d done in %.1fs",
                runs, rows, cols, time.perf_counter() - t0)
    return rounds


def summarize(rounds: np.ndarray) -> dict[str, float]:
    arr = np.asarray(rounds)
    finished = arr[arr != CAPPED]
    summary = {
        "runs": int(arr.size),
        "capped": int(arr.size - finished.size),
    }
    if finished.size == 0:
        return summary
    summary.update({
        "min": int(finished.min()),
        "max": int(finished.max()),
        "mean": float(finished.mean()),
        "p50": float(np.median(finished)),
        "p95": float(np.percentile(finished, 95)),
        "p99": float(np.percentile(finished, 99)),
    })
    return summary


def format_report(summary: dict[str, float]) -> str:
    lines = [f"Runs: {summary['runs']}"]
    if summary["capped"]:
        lines.append(f"Capped: {summary['capped']}")
    if "min" not in summary:
        lines.append("No run finished within the step cap")
        return "\n".join(lines)
    lines += [
        f"Min:  {summary['min']}",
        f"Max:  {summary['max']}",
        f"Avg:  {summary['mean']:.1f}",
        f"P50:  {summary['p50']:.1f}",
        f"P95:  {summary['p95']:.1f}",
        f"P99:  {summary['p99']:.1f}",
    ]
    return "\n".join(lines)


def main() -> None:
    parser = argparse.ArgumentParser(description="Round statistics over many mixing runs")
    parser.add_argument("-n", "--runs", type=int, default=1000,
                        help="Number of independent runs (default: 1000)")
    parser.add_argument("--rows", type=int, default=ROWS,
                        help=f"Grid rows (default: {ROWS})")
    parser.add_argument("--cols", type=int, default=COLS,
                        help=f"Grid columns (default: {COLS})")
    parser.add_argument("--seed", type=int, default=None,
                        help="Batch seed; every run gets its own derived stream")
    parser.add_argument("--max-steps", type=int, default=None,
                        help="Count a run as capped once it passes this many rounds")
    parser.add_argument("--csv", type=str, default=None,
                        help="Write one row per run to this path")
    parser.add_argument("--debug", action="store_true",
                        help="Echo the log to the console")
    args = parser.parse_args()

    setup_logging(args.debug)

    print(f"Grid: {args.rows}x{args.cols}  Runs: {args.runs}")
    print()

    csv_fh = open(args.csv, "w", encoding="utf-8") if args.csv else None
    try:
        rounds = run_batch(
            args.runs,
            rows=args.rows,
            cols=args.cols,
            seed=args.seed,
            max_steps=args.max_steps,
            csv_fh=csv_fh,
            progress_every=max(1, args.runs // 10),
        )
    except ConfigError as e:
        parser.error(str(e))
    finally:
        if csv_fh is not None:
            csv_fh.close()

    print()
    print(format_report(summarize(rounds)))


if __name__ == "__main__":
    main()
