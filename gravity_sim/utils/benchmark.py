#!/usr/bin/env python3
"""
Performance benchmark for octree maintenance.

Compares two ways of keeping the octree current after a step:
- Full rebuild from the particle list
- Incremental rebalance of the existing tree

Usage:
    python -m gravity_sim.utils.benchmark [--particles 1000] [--iterations 10]
"""

from __future__ import annotations

import argparse
import random
import sys
import time

from gravity_sim.core.init_conditions import random_vector
from gravity_sim.physics.octree import Domain, Octree
from gravity_sim.physics.particle import Particle


BOUNDS = 200.0


def generate_particles(n: int, seed: int = 42, *, speed: float = 0.5) -> list[Particle]:
    """Generate random particles well inside the benchmark domain."""
    rng = random.Random(seed)
    return [
        Particle(random_vector(rng, BOUNDS * 0.5), random_vector(rng, speed), rng.uniform(0.5, 1.5))
        for _ in range(n)
    ]


def _mean_std_ms(times: list[float]) -> tuple[float, float]:
    if not times:
        return 0.0, 0.0
    mean = sum(times) / len(times)
    std = (sum((t - mean) ** 2 for t in times) / len(times)) ** 0.5
    return mean * 1000, std * 1000


def benchmark_rebuild(particles: list[Particle], domain: Domain, iterations: int = 10) -> tuple[float, float]:
    """Benchmark moving the particles and building a fresh tree each time."""
    times = []
    for _ in range(iterations):
        for p in particles:
            p.step()
        t0 = time.perf_counter()
        inside = [p for p in particles if domain.is_in_domain(p.pos)]
        if not inside:
            break
        Octree(inside, domain)
        times.append(time.perf_counter() - t0)
    return _mean_std_ms(times)


def benchmark_rebalance(particles: list[Particle], domain: Domain, iterations: int = 10) -> tuple[float, float, int]:
    """Benchmark moving the particles and rebalancing one long-lived tree."""
    tree = Octree(particles, domain)
    escaped = 0
    times = []
    for _ in range(iterations):
        for p in particles:
            p.step()
        t0 = time.perf_counter()
        escaped += len(tree.rebalance_tree())
        times.append(time.perf_counter() - t0)
    mean_ms, std_ms = _mean_std_ms(times)
    return mean_ms, std_ms, escaped


def run_benchmark(n_particles: int, iterations: int) -> dict:
    """Run full benchmark suite."""
    print(f"\n{'='*60}")
    print(f"[bench] {n_particles} particles, {iterations} iterations")
    print(f"{'='*60}")

    domain = Domain.cube(BOUNDS)
    results = {}

    print("Full rebuild...", end=" ", flush=True)
    rebuild_ms, rebuild_std = benchmark_rebuild(generate_particles(n_particles), domain, iterations)
    print(f"{rebuild_ms:.2f} ± {rebuild_std:.2f} ms")
    results["rebuild"] = rebuild_ms

    print("Incremental rebalance...", end=" ", flush=True)
    rebalance_ms, rebalance_std, escaped = benchmark_rebalance(generate_particles(n_particles), domain, iterations)
    print(f"{rebalance_ms:.2f} ± {rebalance_std:.2f} ms ({escaped} escaped)")
    results["rebalance"] = rebalance_ms

    print(f"\n{'='*60}")
    print("Summary:")
    print(f"  Rebuild: {results['rebuild']:.2f} ms")
    if results["rebalance"] > 0:
        speedup = results["rebuild"] / results["rebalance"]
        print(f"  Rebalance: {results['rebalance']:.2f} ms ({speedup:.1f}x vs rebuild)")
    return results


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Benchmark octree rebuild vs rebalance")
    parser.add_argument("--particles", "-n", type=int, default=1000, help="Number of particles")
    parser.add_argument("--iterations", "-i", type=int, default=10, help="Benchmark iterations")
    parser.add_argument("--sweep", action="store_true", help="Run sweep over particle counts")
    args = parser.parse_args(argv)

    if args.particles < 1 or args.iterations < 1:
        print("[bench] particles and iterations must be >= 1", file=sys.stderr)
        raise SystemExit(2)

    print("Gravity Octree Benchmark")
    print(f"Platform: {sys.platform}")

    if args.sweep:
        for n in [100, 500, 1000, 2000, 5000]:
            run_benchmark(n, args.iterations)
    else:
        run_benchmark(args.particles, args.iterations)


if __name__ == "__main__":
    main()
