from __future__ import annotations

import logging
import math
import random
import time
from typing import Callable

from gravity_sim.core.init_conditions import create_random_distribution
from gravity_sim.params import SimParams
from gravity_sim.physics.forces import attract_particles, collide_particles
from gravity_sim.physics.octree import Domain, Octree
from gravity_sim.physics.particle import Particle, Vec3


logger = logging.getLogger("gravity_sim")


class GravitySim:
    """
    Headless N-body simulation with an incrementally maintained octree.

    Each step runs collide -> attract -> move, then rebalances the octree
    (every ``params.rebalance_every`` steps). Particles that leave the octree
    domain keep being simulated but are no longer held by the tree; they are
    listed in ``escaped``.
    """

    def __init__(self, params: SimParams) -> None:
        self.params = params
        self._rng = random.Random(params.seed)
        self.particles: list[Particle] = []
        self.tree: Octree | None = None
        self.escaped: list[Particle] = []
        self._pending: list[Particle] = []
        self.step_count = 0
        self.merge_count = 0
        self.last_step_ms: float | None = None
        self.last_rebalance_ms: float | None = None
        self.reset()

    def reset(self) -> None:
        p = self.params
        self._rng = random.Random(p.seed)
        self.particles = create_random_distribution(p, self._rng)
        self.step_count = 0
        self.merge_count = 0
        self.build_tree()

    def set_particles(self, particles: list[Particle]) -> None:
        """Replace the particle set and rebuild the octree from scratch."""
        self.particles = list(particles)
        self.step_count = 0
        self.build_tree()

    def build_tree(self) -> None:
        p = self.params
        self.escaped = []
        if not p.tree_enabled:
            self.tree = None
            return
        domain = Domain.cube(p.bounds)
        inside: list[Particle] = []
        for pt in self.particles:
            if domain.is_in_domain(pt.pos):
                inside.append(pt)
            else:
                self.escaped.append(pt)
        if self.escaped:
            logger.warning("%d particle(s) start outside the octree domain", len(self.escaped))
        if not inside:
            logger.warning("no particle inside the octree domain, tree disabled")
            self.tree = None
            return
        self.tree = Octree(inside, domain, max_depth=p.max_depth, min_domain_size=p.min_domain_size)

    def _detach(self, survivor: Particle, absorbed: Particle) -> None:
        # Both bodies change (or vanish); the survivor is re-inserted after the merge pass.
        if self.tree is None:
            return
        for pt in (survivor, absorbed):
            if self.tree.contains(pt):
                self.tree.remove(pt)
        self.escaped = [pt for pt in self.escaped if pt is not absorbed and pt is not survivor]
        self._pending.append(survivor)

    def collide(self) -> int:
        self._pending = []
        merges = collide_particles(self.particles, on_merge=self._detach)
        if self.tree is not None and self._pending:
            if self.step_count % self.params.rebalance_every != 0:
                # Leaves still hold last step's positions; inserting would split on stale data.
                self.rebalance()
            alive = {id(pt) for pt in self.particles}
            seen: set[int] = set()
            for pt in self._pending:
                if id(pt) not in alive or id(pt) in seen:
                    continue
                seen.add(id(pt))
                if self.tree.domain.is_in_domain(pt.pos):
                    self.tree.insert(pt)
                else:
                    self.escaped.append(pt)
        self._pending = []
        self.merge_count += merges
        return merges

    def rebalance(self) -> list[Particle]:
        if self.tree is None:
            return []
        t0 = time.perf_counter()
        escaped = self.tree.rebalance_tree()
        self.last_rebalance_ms = (time.perf_counter() - t0) * 1000.0
        self.escaped.extend(escaped)
        return escaped

    def step(self) -> None:
        p = self.params
        t0 = time.perf_counter()
        if p.collisions_enabled:
            self.collide()
        attract_particles(self.particles, p.gravitational_constant)
        for pt in self.particles:
            pt.step()
        self.step_count += 1
        if self.tree is not None and self.step_count % p.rebalance_every == 0:
            self.rebalance()
        self.last_step_ms = (time.perf_counter() - t0) * 1000.0

    def run(
        self,
        steps: int | None = None,
        *,
        callback: Callable[["GravitySim"], None] | None = None,
    ) -> None:
        n = self.params.timesteps if steps is None else int(steps)
        if n < 0:
            raise ValueError("steps must be >= 0")
        for _ in range(n):
            self.step()
            if callback is not None:
                callback(self)

    def total_mass(self) -> float:
        return sum(pt.mass for pt in self.particles)

    def total_momentum(self) -> Vec3:
        total = Vec3()
        for pt in self.particles:
            total = total + pt.momentum
        return total

    def validate_state(self) -> list[str]:
        issues: list[str] = []

        for i, pt in enumerate(self.particles):
            if not all(math.isfinite(v) for v in (*pt.pos, *pt.vel)):
                issues.append(f"particle {i} has non-finite position/velocity")

        tree = self.tree
        if tree is None:
            return issues

        held = sum(1 for pt in self.particles if tree.contains(pt))
        if held != len(tree):
            issues.append(f"octree holds {len(tree)} particles, {held} of them simulated")
        if len(tree) + len(self.escaped) != len(self.particles):
            issues.append("octree and escaped lists do not cover every particle")

        if self.step_count % self.params.rebalance_every == 0:
            for leaf in tree.leaves():
                if not leaf.domain.is_in_domain(tree.table[leaf.particles[0]].pos):
                    issues.append(f"leaf at depth {leaf.depth} holds a particle outside its domain")
            tree_mass = tree.mass
            held_mass = sum(pt.mass for pt in tree.particles())
            if not math.isclose(tree_mass, held_mass, rel_tol=1e-9, abs_tol=1e-12):
                issues.append(f"octree mass {tree_mass:.6g} != held particle mass {held_mass:.6g}")

        return issues
