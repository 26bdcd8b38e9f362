"""Tests for direct attraction and collision merging."""

import random
import unittest

import numpy as np

from gravity_sim.physics.forces import (
    attract_particles,
    collide_particles,
    compute_accelerations_direct,
)
from gravity_sim.physics.particle import Particle, Vec3


def _random_particles(n: int, seed: int = 3) -> list[Particle]:
    rng = random.Random(seed)
    return [
        Particle(
            Vec3(rng.uniform(-20, 20), rng.uniform(-20, 20), rng.uniform(-20, 20)),
            Vec3(),
            rng.uniform(0.5, 2.0),
        )
        for _ in range(n)
    ]


class TestDirectAccelerations(unittest.TestCase):
    """Tests comparing the NumPy kernel to the pairwise particle rule."""

    def test_matches_pairwise_attract(self) -> None:
        particles = _random_particles(17)
        positions = np.array([p.pos.as_tuple() for p in particles])
        masses = np.array([p.mass for p in particles])
        acc = compute_accelerations_direct(positions, masses, g=1.0, tile_size=5)

        for i, p in enumerate(particles):
            single = Particle(p.pos, Vec3(), p.mass)
            for j, other in enumerate(particles):
                if i != j:
                    single.attract(other, g=1.0)
            self.assertAlmostEqual(acc[i, 0], single.vel.x, places=10)
            self.assertAlmostEqual(acc[i, 1], single.vel.y, places=10)
            self.assertAlmostEqual(acc[i, 2], single.vel.z, places=10)

    def test_coincident_pair_contributes_nothing(self) -> None:
        positions = np.array([[1.0, 1.0, 1.0], [1.0, 1.0, 1.0]])
        acc = compute_accelerations_direct(positions, np.array([1.0, 1.0]), g=1.0)
        np.testing.assert_array_equal(acc, np.zeros((2, 3)))

    def test_bad_shapes_raise(self) -> None:
        with self.assertRaises(ValueError):
            compute_accelerations_direct(np.zeros((3, 2)), np.ones(3), g=1.0)
        with self.assertRaises(ValueError):
            compute_accelerations_direct(np.zeros((3, 3)), np.ones(2), g=1.0)

    def test_attract_particles_conserves_momentum(self) -> None:
        particles = _random_particles(12)
        acc = attract_particles(particles, g=1.0)
        self.assertEqual(acc.shape, (12, 3))

        total = Vec3()
        for p in particles:
            total = total + p.momentum
        self.assertAlmostEqual(total.x, 0.0, places=10)
        self.assertAlmostEqual(total.y, 0.0, places=10)
        self.assertAlmostEqual(total.z, 0.0, places=10)

    def test_attract_empty(self) -> None:
        self.assertEqual(attract_particles([], g=1.0).shape, (0, 3))


class TestCollisions(unittest.TestCase):
    """Tests for merge-on-contact."""

    def test_single_merge(self) -> None:
        a = Particle(Vec3(0.0, 0.0, 0.0), Vec3(), 1.0)
        b = Particle(Vec3(1.5, 0.0, 0.0), Vec3(), 1.0)
        c = Particle(Vec3(3.6, 0.0, 0.0), Vec3(), 1.0)
        particles = [a, b, c]

        merges = collide_particles(particles)

        self.assertEqual(merges, 1)
        self.assertEqual(particles, [a, c])
        self.assertEqual(a.mass, 2.0)
        self.assertAlmostEqual(a.pos.x, 0.75, places=12)

    def test_chain_merge(self) -> None:
        """The merged body is checked again against everything else."""
        a = Particle(Vec3(0.0, 0.0, 0.0), Vec3(), 1.0)
        b = Particle(Vec3(1.5, 0.0, 0.0), Vec3(), 1.0)
        c = Particle(Vec3(2.9, 0.0, 0.0), Vec3(), 1.0)
        particles = [a, b, c]
        seen: list[tuple[Particle, Particle]] = []

        merges = collide_particles(particles, on_merge=lambda one, two: seen.append((one, two)))

        self.assertEqual(merges, 2)
        self.assertEqual(particles, [a])
        self.assertEqual(a.mass, 3.0)
        self.assertEqual(seen, [(a, b), (a, c)])

    def test_no_overlap(self) -> None:
        particles = [Particle(Vec3(float(10 * i), 0.0, 0.0)) for i in range(5)]
        self.assertEqual(collide_particles(particles), 0)
        self.assertEqual(len(particles), 5)


if __name__ == "__main__":
    unittest.main()
