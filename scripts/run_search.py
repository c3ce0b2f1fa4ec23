#!/usr/bin/env python3
"""Run a trajectory search locally, without Redis or the API server.

Spawns a compute worker pool, searches the lowest delta-v trajectory along
a body sequence, prints each generation and the best steps to stderr and
writes the encoded result as JSON.

Usage:
    python scripts/run_search.py earth venus earth jupiter --start 2030-01-01 --end 2032-01-01
    python scripts/run_search.py earth mars --generations 50 --workers 4 --out result.json
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import time

# Add src to path
sys.path.insert(0, "src")

from config import settings
from ephemeris.bodies import SOLAR_SYSTEM
from mechanics.transforms import iso_to_seconds, seconds_to_iso
from optimizer.solver import GenerationSample, SearchResult, TrajectorySolver
from serialization.encoder import encode_search_result
from workers.pool import WorkerPool


def print_sample(sample: GenerationSample, best_delta_v: float) -> None:
    print(f"gen {sample.generation:4d}  best {sample.best:10.4f}  mean {sample.mean:10.4f}  "
          f"best dv {best_delta_v:.4f} km/s", file=sys.stderr)


def print_steps(result: SearchResult) -> None:
    for step in result.steps:
        body = SOLAR_SYSTEM[step.attractor_id].name
        line = f"{seconds_to_iso(step.date_of_start)}  {body:<8} {step.duration / 86400.0:9.2f} d"
        if step.maneuver is not None:
            line += f"  {step.maneuver.context.kind} {step.maneuver.magnitude:.4f} km/s"
        if step.flyby is not None:
            line += f"  periapsis {step.flyby.periapsis_radius:.0f} km"
        print(line, file=sys.stderr)


async def main(args: argparse.Namespace) -> None:
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    logger = logging.getLogger("run_search")

    sequence = [SOLAR_SYSTEM.resolve(name).id for name in args.bodies]
    search = settings.search
    if args.generations:
        search = search.model_copy(update={"max_generations": args.generations})

    logger.info("Searching %s [%s -> %s]",
                " -> ".join(SOLAR_SYSTEM[i].name for i in sequence), args.start, args.end)

    t0 = time.time()
    async with WorkerPool(size=args.workers, seed=args.seed) as pool:
        await pool.start(search, SOLAR_SYSTEM)
        solver = TrajectorySolver(pool, search)
        result = await solver.search_optimal_trajectory(
            sequence,
            iso_to_seconds(args.start),
            iso_to_seconds(args.end),
            args.altitude,
            on_generation=print_sample,
        )
    elapsed = time.time() - t0

    logger.info("Done in %.1f seconds. Best delta-v: %.4f km/s", elapsed, result.total_delta_v)
    print_steps(result)

    payload = json.dumps(encode_search_result(result, SOLAR_SYSTEM, args.points), indent=2)
    if args.out:
        with open(args.out, "w") as f:
            f.write(payload)
        logger.info("Result written to %s", args.out)
    else:
        print(payload)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Search a multi gravity assist trajectory")
    parser.add_argument("bodies", nargs="+", help="Body sequence (names or ids), departure first")
    parser.add_argument("--start", default="2030-01-01", help="Departure window start (ISO)")
    parser.add_argument("--end", default="2032-01-01", help="Departure window end (ISO)")
    parser.add_argument("--altitude", type=float, default=200.0, help="Parking orbit altitude (km)")
    parser.add_argument("--generations", type=int, default=None, help="Override max generations")
    parser.add_argument("--workers", type=int, default=None, help="Compute worker count")
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    parser.add_argument("--points", type=int, default=0, help="Sampled positions per step")
    parser.add_argument("--out", default=None, help="Output JSON file (stdout if omitted)")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    if len(args.bodies) < 2:
        parser.error("a sequence needs at least two bodies")
    asyncio.run(main(args))
