"""
Initial condition generators.

Available modes:
- random: positions and velocity components drawn uniformly from symmetric
  ranges around the origin
"""

from __future__ import annotations

import random
from typing import TYPE_CHECKING

from gravity_sim.physics.particle import Particle, Vec3

if TYPE_CHECKING:
    from gravity_sim.params import SimParams


def random_vector(rng: random.Random, extent: float) -> Vec3:
    """Uniform sample of the cube [-extent, extent)³ (a zero extent gives the origin)."""
    if extent <= 0.0:
        return Vec3()
    return Vec3(
        rng.uniform(-extent, extent),
        rng.uniform(-extent, extent),
        rng.uniform(-extent, extent),
    )


def create_random_distribution(
    params: "SimParams",
    rng: random.Random,
    count: int | None = None,
) -> list[Particle]:
    """
    Create a uniform random distribution of equal-mass particles.

    Args:
        params: Simulation parameters
        rng: Random number generator
        count: Number of particles (defaults to params.particle_count)

    Returns:
        List of Particle objects
    """
    n = int(params.particle_count if count is None else count)
    if n <= 0:
        raise ValueError("Must create at least one particle")

    pos_range = float(params.position_range)
    vel_range = float(params.velocity_range)
    mass = float(params.particle_mass)
    radius_scale = float(params.radius_scale)

    particles: list[Particle] = []
    for _ in range(n):
        particles.append(Particle(
            random_vector(rng, pos_range),
            random_vector(rng, vel_range),
            mass,
            radius_scale=radius_scale,
        ))
    return particles
