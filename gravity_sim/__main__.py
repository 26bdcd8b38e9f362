"""
Headless simulation runner.

Usage:
    python -m gravity_sim [--params params.json] [--steps 100] [--export out/]
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from gravity_sim.core.sim import GravitySim
from gravity_sim.params import SimParams
from gravity_sim.physics.octree import OctreeError
from gravity_sim.utils.export import export_particles_csv, export_summary


def build_params(args: argparse.Namespace) -> SimParams:
    params = SimParams.load(args.params) if args.params else SimParams()
    if args.particles is not None:
        params.particle_count = args.particles
    if args.steps is not None:
        params.timesteps = args.steps
    if args.seed is not None:
        params.seed = args.seed
    if args.no_tree:
        params.tree_enabled = False
    return params.clamp()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run a headless gravity simulation")
    parser.add_argument("--params", type=Path, help="JSON parameters file")
    parser.add_argument("--particles", "-n", type=int, help="Number of particles")
    parser.add_argument("--steps", "-s", type=int, help="Number of timesteps")
    parser.add_argument("--seed", type=int, help="Random seed")
    parser.add_argument("--no-tree", action="store_true", help="Do not maintain the octree")
    parser.add_argument("--every", type=int, default=10, help="Print progress every N steps")
    parser.add_argument("--export", type=Path, help="Directory for CSV and summary output")
    parser.add_argument("--save-params", type=Path, help="Write the effective parameters as JSON")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(name)s] %(levelname)s %(message)s",
    )

    try:
        params = build_params(args)
    except (OSError, ValueError) as e:
        print(f"[params] Error: {e}", file=sys.stderr)
        return 2
    for warning in params.validate():
        print(f"[params] {warning}", file=sys.stderr)
    if args.save_params:
        params.save(args.save_params)

    try:
        sim = GravitySim(params)
    except OctreeError as e:
        print(f"[sim] Error: {e}", file=sys.stderr)
        return 1

    every = max(1, args.every)

    def report(s: GravitySim) -> None:
        if s.step_count % every:
            return
        held = len(s.tree) if s.tree is not None else 0
        rebalance = f"{s.last_rebalance_ms:.2f} ms" if s.last_rebalance_ms is not None else "-"
        print(
            f"[sim] step {s.step_count}: {len(s.particles)} particles, "
            f"{s.merge_count} merges, {held} in tree, rebalance {rebalance}"
        )

    try:
        sim.run(callback=report)
    except OctreeError as e:
        print(f"[sim] Error at step {sim.step_count}: {e}", file=sys.stderr)
        return 1

    for issue in sim.validate_state():
        print(f"[sim] {issue}", file=sys.stderr)

    if args.export:
        try:
            stats = export_particles_csv(sim.particles, args.export / "particles.csv", step=sim.step_count)
            summary_path = export_summary(sim, args.export / "summary.txt")
            print(f"[export] Saved {stats.particle_count} particles to {stats.file_path}")
            print(f"[export] Saved summary to {summary_path}")
        except OSError as e:
            print(f"[export] Error: {e}", file=sys.stderr)
            return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
