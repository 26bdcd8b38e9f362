import math
import unittest

from gravity_sim.core.sim import GravitySim
from gravity_sim.params import SimParams
from gravity_sim.physics.particle import Particle, Vec3


class TestSim(unittest.TestCase):
    def test_tree_holds_initial_particles(self) -> None:
        params = SimParams(particle_count=50, collisions_enabled=False, seed=3).clamp()
        sim = GravitySim(params)

        self.assertEqual(len(sim.particles), 50)
        self.assertIsNotNone(sim.tree)
        self.assertEqual(len(sim.tree), 50)
        self.assertEqual(sim.escaped, [])
        self.assertEqual(sim.validate_state(), [])

    def test_tree_disabled(self) -> None:
        params = SimParams(particle_count=10, tree_enabled=False).clamp()
        sim = GravitySim(params)
        sim.run(3)
        self.assertIsNone(sim.tree)
        self.assertEqual(sim.step_count, 3)
        self.assertEqual(sim.validate_state(), [])

    def test_steps_keep_tree_consistent(self) -> None:
        params = SimParams(
            particle_count=80,
            position_range=40.0,
            velocity_range=2.0,
            gravitational_constant=0.5,
            radius_scale=0.5,
            bounds=50.0,
            seed=7,
        ).clamp()
        sim = GravitySim(params)
        mass0 = sim.total_mass()

        for _ in range(15):
            sim.step()
            self.assertEqual(sim.validate_state(), [])

        self.assertTrue(math.isclose(sim.total_mass(), mass0, rel_tol=1e-12))
        self.assertEqual(len(sim.tree) + len(sim.escaped), len(sim.particles))

    def test_collisions_conserve_mass_and_momentum(self) -> None:
        params = SimParams(
            particle_count=60,
            position_range=8.0,
            velocity_range=0.5,
            gravitational_constant=0.0,
            radius_scale=1.0,
            bounds=50.0,
            seed=2,
        ).clamp()
        sim = GravitySim(params)
        mass0 = sim.total_mass()
        p0 = sim.total_momentum()

        sim.step()

        self.assertGreater(sim.merge_count, 0)
        self.assertLess(len(sim.particles), 60)
        self.assertTrue(math.isclose(sim.total_mass(), mass0, rel_tol=1e-12))
        p1 = sim.total_momentum()
        self.assertAlmostEqual(p1.x, p0.x, places=9)
        self.assertAlmostEqual(p1.y, p0.y, places=9)
        self.assertAlmostEqual(p1.z, p0.z, places=9)
        self.assertTrue(math.isclose(sim.tree.mass, mass0, rel_tol=1e-12))
        self.assertEqual(sim.validate_state(), [])

    def test_escaping_particle(self) -> None:
        params = SimParams(gravitational_constant=0.0, collisions_enabled=False, bounds=10.0).clamp()
        sim = GravitySim(params)
        runaway = Particle(Vec3(8.0, 0.0, 0.0), Vec3(1.5, 0.0, 0.0), 1.0)
        stay = Particle(Vec3(-5.0, 0.0, 0.0), Vec3(), 1.0)
        sim.set_particles([runaway, stay])
        self.assertEqual(len(sim.tree), 2)

        sim.step()
        self.assertEqual(sim.escaped, [])
        sim.step()

        self.assertEqual(sim.escaped, [runaway])
        self.assertNotIn(runaway, sim.tree)
        self.assertEqual(len(sim.tree), 1)
        self.assertEqual(sim.validate_state(), [])

    def test_particles_starting_outside_domain(self) -> None:
        params = SimParams(gravitational_constant=0.0, collisions_enabled=False, bounds=10.0).clamp()
        sim = GravitySim(params)
        outside = Particle(Vec3(20.0, 0.0, 0.0))
        sim.set_particles([outside, Particle(Vec3(1.0, 1.0, 1.0))])
        self.assertEqual(sim.escaped, [outside])
        self.assertEqual(len(sim.tree), 1)

        sim.set_particles([outside])
        self.assertIsNone(sim.tree)

    def test_merge_between_rebalances(self) -> None:
        """A merge survivor is inserted after stale leaves are brought up to date."""
        params = SimParams(
            particle_count=2,
            position_range=50.0,
            bounds=100.0,
            gravitational_constant=0.0,
            collisions_enabled=True,
            rebalance_every=5,
        ).clamp()
        sim = GravitySim(params)
        tiny = 1e-9
        a = Particle(Vec3(50.0, 50.0, 50.0), Vec3(-50.000000001, -50.000000001, -50.000000001), radius_scale=tiny)
        b = Particle(Vec3(-50.0, -50.0, -50.0), Vec3(100.0, 100.0, 100.0), radius_scale=tiny)
        c = Particle(Vec3(2e-7, 2e-7, -10.0), Vec3(0.0, 0.0, 10.0), radius_scale=tiny)
        d = Particle(Vec3(2e-7, 2e-7, -20.0), Vec3(0.0, 0.0, 20.000000001), radius_scale=tiny)
        sim.set_particles([a, b, c, d])

        sim.step()
        self.assertEqual(sim.merge_count, 0)
        sim.step()

        self.assertEqual(sim.merge_count, 1)
        self.assertEqual(sim.particles, [a, b, c])
        self.assertEqual(len(sim.tree), 3)
        self.assertAlmostEqual(sim.tree.mass, 4.0, places=12)
        self.assertEqual(sim.validate_state(), [])

    def test_rebalance_every(self) -> None:
        params = SimParams(particle_count=20, rebalance_every=2, collisions_enabled=False).clamp()
        sim = GravitySim(params)
        sim.step()
        self.assertIsNone(sim.last_rebalance_ms)
        sim.step()
        self.assertIsNotNone(sim.last_rebalance_ms)

    def test_validate_state_flags_nan(self) -> None:
        params = SimParams(particle_count=1, tree_enabled=False).clamp()
        sim = GravitySim(params)

        self.assertEqual(sim.validate_state(), [])

        sim.particles[0].pos = Vec3(float("nan"), 0.0, 0.0)
        issues = sim.validate_state()
        self.assertTrue(any("non-finite" in issue for issue in issues))

    def test_run_callback(self) -> None:
        params = SimParams(particle_count=5, timesteps=4, collisions_enabled=False).clamp()
        sim = GravitySim(params)
        steps: list[int] = []
        sim.run(callback=lambda s: steps.append(s.step_count))
        self.assertEqual(steps, [1, 2, 3, 4])
        with self.assertRaises(ValueError):
            sim.run(-1)
