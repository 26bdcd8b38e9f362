"""
Direct N-body attraction and collision merging.

This module provides the O(N²) routines the simulation runs every step:
- compute_accelerations_direct: exact pairwise accelerations (NumPy, tiled)
- attract_particles: apply one step of attraction to particle velocities
- collide_particles: merge every pair of overlapping particles

Example:
    >>> from gravity_sim.physics.forces import attract_particles
    >>> attract_particles(particles, g=1.0)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable

import numpy as np

from gravity_sim.physics.particle import GRAVITATIONAL_CONSTANT, Vec3

if TYPE_CHECKING:
    from gravity_sim.physics.particle import Particle


def compute_accelerations_direct(
    positions: np.ndarray,
    masses: np.ndarray,
    g: float,
    *,
    tile_size: int = 256,
) -> np.ndarray:
    """
    Compute accelerations using tiled direct summation.

    Args:
        positions: (N, 3) array of positions
        masses: (N,) array of masses
        g: Gravitational constant
        tile_size: Block size of the i/j loops

    Returns:
        (N, 3) array of accelerations

    Note:
        a_i = G * Σ_j m_j * (r_j - r_i) / |r_j - r_i|³, skipping j == i and
        coincident pairs.
    """
    pos = np.asarray(positions, dtype=np.float64)
    m = np.asarray(masses, dtype=np.float64)
    if pos.ndim != 2 or pos.shape[1] != 3:
        raise ValueError("positions must be Nx3")
    if m.shape != (pos.shape[0],):
        raise ValueError("positions/masses length mismatch")

    n = pos.shape[0]
    acc = np.zeros((n, 3), dtype=np.float64)
    tile = max(1, int(tile_size))

    for i0 in range(0, n, tile):
        i1 = min(n, i0 + tile)
        pi = pos[i0:i1]
        acc_i = np.zeros((i1 - i0, 3), dtype=np.float64)

        for j0 in range(0, n, tile):
            j1 = min(n, j0 + tile)
            pj = pos[j0:j1]
            mj = m[j0:j1].reshape(1, -1)

            d = pj[None, :, :] - pi[:, None, :]
            r2 = np.sum(d * d, axis=2)
            # Self-pairs and coincident pairs contribute nothing.
            r2[r2 == 0.0] = np.inf

            inv_r = 1.0 / np.sqrt(r2)
            inv_r3 = inv_r * inv_r * inv_r
            f = g * mj * inv_r3
            acc_i += np.sum(d * f[:, :, None], axis=1)

        acc[i0:i1] = acc_i

    return acc


def attract_particles(particles: list["Particle"], g: float = GRAVITATIONAL_CONSTANT) -> np.ndarray:
    """
    Apply one step of mutual attraction to the particles' velocities.

    Every particle is accelerated towards every other one using the positions
    at the start of the call.

    Returns:
        (N, 3) array of the accelerations that were applied
    """
    n = len(particles)
    if n == 0:
        return np.zeros((0, 3), dtype=np.float64)
    positions = np.array([p.pos.as_tuple() for p in particles], dtype=np.float64)
    masses = np.array([p.mass for p in particles], dtype=np.float64)
    acc = compute_accelerations_direct(positions, masses, g)
    for p, (ax, ay, az) in zip(particles, acc.tolist()):
        p.vel = p.vel + Vec3(ax, ay, az)
    return acc


def collide_particles(
    particles: list["Particle"],
    *,
    on_merge: Callable[["Particle", "Particle"], None] | None = None,
) -> int:
    """
    Merge overlapping particles in place.

    The first particle of a colliding pair absorbs the second, which is removed
    from the list. After each merge the scan starts over, since the merged
    body may now overlap others.

    Args:
        particles: Particles to scan (modified in place)
        on_merge: Called as ``on_merge(survivor, absorbed)`` before the merge

    Returns:
        Number of merges performed
    """
    merges = 0
    restart = True
    while restart:
        restart = False
        for i, one in enumerate(particles):
            for j in range(len(particles)):
                if i == j:
                    continue
                two = particles[j]
                if not one.check_collision(two):
                    continue
                if on_merge is not None:
                    on_merge(one, two)
                one.collide(two)
                del particles[j]
                merges += 1
                restart = True
                break
            if restart:
                break
    return merges
