"""
Export utilities for simulation data.

This module provides functions to export simulation state:
- CSV: Positions, velocities and masses
- Summary: Totals, center of mass and octree shape

Usage:
    >>> from gravity_sim.utils.export import export_particles_csv
    >>> export_particles_csv(sim.particles, "output.csv")
"""

from __future__ import annotations

import csv
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from gravity_sim.core.sim import GravitySim
    from gravity_sim.physics.particle import Particle


@dataclass
class ExportStats:
    """Statistics from an export operation."""
    file_path: Path
    particle_count: int
    total_mass: float
    timestamp: str


def export_particles_csv(
    particles: list["Particle"],
    output_path: str | Path,
    *,
    include_velocity: bool = True,
    step: int | None = None,
) -> ExportStats:
    """
    Export particle data to a CSV file.

    Args:
        particles: Particles to write
        output_path: Path to output CSV file
        include_velocity: Include velocity columns (vx, vy, vz)
        step: Optional step number to include as first column

    Returns:
        ExportStats with export details
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    header = ["index", "x", "y", "z", "mass"]
    if include_velocity:
        header.extend(["vx", "vy", "vz"])
    if step is not None:
        header.insert(0, "step")

    total_mass = sum(p.mass for p in particles)
    timestamp = datetime.now().isoformat()
    with open(output_path, "w", newline="") as f:
        writer = csv.writer(f)

        writer.writerow([f"# Gravity Export - {timestamp}"])
        writer.writerow([f"# Particles: {len(particles)} (total mass: {total_mass:.6g})"])
        writer.writerow(header)

        for i, p in enumerate(particles):
            row = []
            if step is not None:
                row.append(step)
            row.extend([
                i,
                f"{p.pos.x:.6f}",
                f"{p.pos.y:.6f}",
                f"{p.pos.z:.6f}",
                f"{p.mass:.6f}",
            ])
            if include_velocity:
                row.extend([
                    f"{p.vel.x:.6f}",
                    f"{p.vel.y:.6f}",
                    f"{p.vel.z:.6f}",
                ])
            writer.writerow(row)

    return ExportStats(
        file_path=output_path,
        particle_count=len(particles),
        total_mass=total_mass,
        timestamp=timestamp,
    )


def export_summary(sim: "GravitySim", output_path: str | Path) -> Path:
    """
    Export summary statistics of a simulation to a text file.

    Returns:
        Path to the created file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    particles = sim.particles
    total_mass = sim.total_mass()
    if particles:
        cx = sum(p.pos.x * p.mass for p in particles) / total_mass
        cy = sum(p.pos.y * p.mass for p in particles) / total_mass
        cz = sum(p.pos.z * p.mass for p in particles) / total_mass
        speeds = [p.vel.magnitude() for p in particles]
        avg_speed = sum(speeds) / len(speeds)
        max_speed = max(speeds)
    else:
        cx = cy = cz = 0.0
        avg_speed = max_speed = 0.0

    with open(output_path, "w") as f:
        f.write("Gravity Simulation Summary\n")
        f.write(f"Generated: {datetime.now().isoformat()}\n")
        f.write(f"Step: {sim.step_count}\n")
        f.write("\n")
        f.write("Particles:\n")
        f.write(f"  Total: {len(particles)}\n")
        f.write(f"  Merges: {sim.merge_count}\n")
        f.write(f"  Outside octree: {len(sim.escaped)}\n")
        f.write(f"  Total mass: {total_mass:.6g}\n")
        f.write("\n")
        f.write("Center of Mass:\n")
        f.write(f"  X: {cx:.4f}\n")
        f.write(f"  Y: {cy:.4f}\n")
        f.write(f"  Z: {cz:.4f}\n")
        f.write("\n")
        f.write("Velocity Statistics:\n")
        f.write(f"  Average speed: {avg_speed:.4f}\n")
        f.write(f"  Max speed: {max_speed:.4f}\n")
        if sim.tree is not None:
            stats = sim.tree.stats()
            f.write("\n")
            f.write("Octree:\n")
            f.write(f"  Particles: {stats.particle_count}\n")
            f.write(f"  Nodes: {stats.node_count}\n")
            f.write(f"  Leaves: {stats.leaf_count}\n")
            f.write(f"  Depth: {stats.depth}\n")
            f.write(f"  Mass: {stats.mass:.6g}\n")

    return output_path
