"""
Incrementally maintained Barnes-Hut octree.

This module provides an octree over a set of particles that is built once and
then kept up to date as the particles move, instead of being rebuilt from
scratch every step.

The structure works by:
1. Recursively subdividing an axis-aligned box into octants until every leaf
   holds a single particle
2. Storing on every node the total mass and center of mass of its subtree,
   together with the ids of every particle in that subtree
3. After the particles have moved, walking the tree and moving each particle
   that left its leaf's box into the nearest ancestor whose box still
   contains it (``Octree.rebalance_tree``)

Particles live in a flat ``ParticleTable`` keyed by integer id; nodes only
hold ids.

Constants:
    MAX_DEPTH: Deepest level at which a node may still be subdivided
    MIN_DOMAIN_SIZE: Smallest box edge that may still be subdivided

Example:
    >>> from gravity_sim.physics.octree import Domain, Octree
    >>> from gravity_sim.physics.particle import Particle, Vec3
    >>> particles = [Particle(Vec3(-50, -50, -50)), Particle(Vec3(50, 50, 50))]
    >>> tree = Octree(particles, Domain(Vec3(-100, -100, -100), Vec3(100, 100, 100)))
    >>> particles[0].pos = Vec3(60, 60, 60)
    >>> escaped = tree.rebalance_tree()
"""

from __future__ import annotations

import logging
import operator
from dataclasses import dataclass
from typing import Iterable, Iterator

from gravity_sim.physics.particle import Particle, Vec3


logger = logging.getLogger("gravity_sim")

MAX_DEPTH = 32
MIN_DOMAIN_SIZE = 1e-6


class OctreeError(ValueError):
    """Invalid argument passed to an octree operation."""


class SubdivisionLimitError(OctreeError):
    """A node would have to be split past the depth or size cutoff."""


def _as_vec(value: Vec3 | Iterable[float]) -> Vec3:
    if isinstance(value, Vec3):
        return value
    x, y, z = value
    return Vec3(float(x), float(y), float(z))


@dataclass(frozen=True, slots=True)
class Domain:
    """
    Axis-aligned box with half-open membership: min <= p < max on each axis.

    The corners are normalised on construction, so ``Domain(a, b)`` and
    ``Domain(b, a)`` are the same box.
    """
    min: Vec3
    max: Vec3

    def __post_init__(self) -> None:
        a = _as_vec(self.min)
        b = _as_vec(self.max)
        object.__setattr__(self, "min", Vec3(min(a.x, b.x), min(a.y, b.y), min(a.z, b.z)))
        object.__setattr__(self, "max", Vec3(max(a.x, b.x), max(a.y, b.y), max(a.z, b.z)))

    @classmethod
    def cube(cls, half: float, center: Vec3 = Vec3()) -> "Domain":
        offset = Vec3(half, half, half)
        return cls(center - offset, center + offset)

    @property
    def span(self) -> Vec3:
        return self.max - self.min

    @property
    def mid(self) -> Vec3:
        return self.min + self.span * 0.5

    def size(self) -> float:
        """Length of the shortest edge."""
        span = self.span
        return min(span.x, span.y, span.z)

    def is_in_domain(self, pos: Vec3) -> bool:
        lo = self.min
        hi = self.max
        return (
            lo.x <= pos.x < hi.x
            and lo.y <= pos.y < hi.y
            and lo.z <= pos.z < hi.z
        )

    def octant_index(self, pos: Vec3) -> int:
        """
        Index (0-7) of the octant holding ``pos``.

        z is compared first, then y, then x; on each axis the upper half
        (>= mid) comes first. The result is unspecified for positions outside
        the domain.
        """
        mid = self.mid
        if pos.z >= mid.z:
            if pos.y >= mid.y:
                return 0 if pos.x >= mid.x else 1
            return 2 if pos.x >= mid.x else 3
        if pos.y >= mid.y:
            return 4 if pos.x >= mid.x else 5
        return 6 if pos.x >= mid.x else 7

    def octant_domain(self, index: int) -> "Domain":
        """
        Sub-domain for an octant index, spanning from the midpoint to the
        matching outer corner.

        Raises:
            OctreeError: If index is not an integer from 0 to 7
        """
        try:
            value = operator.index(index)
        except TypeError:
            raise OctreeError(f"Invalid octant index: {index!r}") from None
        if isinstance(index, bool) or not 0 <= value < 8:
            raise OctreeError(f"Invalid octant index: {index!r}")
        index = value
        lo = self.min
        hi = self.max
        corner = Vec3(
            hi.x if index % 2 == 0 else lo.x,
            hi.y if (index // 2) % 2 == 0 else lo.y,
            hi.z if index < 4 else lo.z,
        )
        return Domain(self.mid, corner)


@dataclass(frozen=True, slots=True)
class SubdivisionLimits:
    max_depth: int = MAX_DEPTH
    min_domain_size: float = MIN_DOMAIN_SIZE


DEFAULT_LIMITS = SubdivisionLimits()


class ParticleTable:
    """
    Flat store of the particles held by one octree.

    Ids are allocated in increasing order and never reused. Lookup by particle
    goes through object identity.
    """

    def __init__(self) -> None:
        self._particles: dict[int, Particle] = {}
        self._ids: dict[int, int] = {}
        self._next_id = 0

    def add(self, particle: Particle) -> int:
        if id(particle) in self._ids:
            raise OctreeError("Particle is already registered")
        pid = self._next_id
        self._next_id += 1
        self._particles[pid] = particle
        self._ids[id(particle)] = pid
        return pid

    def pop(self, pid: int) -> Particle:
        particle = self._particles.pop(pid)
        del self._ids[id(particle)]
        return particle

    def id_of(self, particle: Particle) -> int | None:
        return self._ids.get(id(particle))

    def __getitem__(self, pid: int) -> Particle:
        return self._particles[pid]

    def __len__(self) -> int:
        return len(self._particles)

    def __iter__(self) -> Iterator[int]:
        return iter(self._particles)


class Node:
    """
    A node in the octree.

    A node is either a leaf holding exactly one particle (no children) or an
    internal node with up to 8 children, one per populated octant. Every node
    lists the ids of all particles anywhere in its subtree.

    Mass and center of mass are cached. Mutations only mark the node dirty;
    reading ``mass`` or ``center_of_mass`` refreshes the dirty part of the
    subtree bottom-up (``update_node_values``).

    Attributes:
        table: Particle store shared by the whole tree
        domain: Region this node is responsible for
        depth: Distance from the root (root = 0)
        particles: Ids of every particle held in this subtree
        children: Child nodes (empty for a leaf)
        limits: Subdivision cutoffs
    """

    __slots__ = (
        "table",
        "domain",
        "depth",
        "particles",
        "children",
        "limits",
        "_mass",
        "_center_of_mass",
        "_dirty",
    )

    def __init__(
        self,
        table: ParticleTable,
        particles: Iterable[int],
        domain: Domain,
        *,
        depth: int = 0,
        limits: SubdivisionLimits = DEFAULT_LIMITS,
    ) -> None:
        ids = list(particles)
        if not ids:
            raise OctreeError("Node must contain at least one particle")
        self.table = table
        self.domain = domain
        self.depth = depth
        self.limits = limits
        self.children: list[Node] = []
        self._mass = 0.0
        self._center_of_mass = Vec3()
        if len(ids) > 1:
            self.children = self.build_children(ids, domain)
        self.particles = ids
        self._dirty = True
        self.update_node_values()

    @classmethod
    def leaf(
        cls,
        table: ParticleTable,
        pid: int,
        domain: Domain,
        *,
        depth: int = 0,
        limits: SubdivisionLimits = DEFAULT_LIMITS,
    ) -> "Node":
        return cls(table, [pid], domain, depth=depth, limits=limits)

    def is_leaf(self) -> bool:
        return not self.children

    @property
    def mass(self) -> float:
        if self._dirty:
            self.update_node_values()
        return self._mass

    @property
    def center_of_mass(self) -> Vec3:
        if self._dirty:
            self.update_node_values()
        return self._center_of_mass

    def contains(self, pid: int) -> bool:
        return pid in self.particles

    @staticmethod
    def compute_mass(nodes: list["Node"]) -> float:
        if not nodes:
            raise OctreeError("Cannot aggregate an empty list of nodes")
        return sum(node.mass for node in nodes)

    @staticmethod
    def compute_center_of_mass(nodes: list["Node"]) -> Vec3:
        if not nodes:
            raise OctreeError("Cannot aggregate an empty list of nodes")
        total = 0.0
        sx = sy = sz = 0.0
        for node in nodes:
            m = node.mass
            c = node.center_of_mass
            sx += c.x * m
            sy += c.y * m
            sz += c.z * m
            total += m
        inv = 1.0 / total
        return Vec3(sx * inv, sy * inv, sz * inv)

    def build_children(self, particles: list[int], domain: Domain) -> list["Node"]:
        """
        Partition particle ids by octant and build one child per non-empty
        octant.

        Raises:
            OctreeError: If fewer than two ids are given
            SubdivisionLimitError: If this node is too deep or too small to
                be split (typically coincident particles)
        """
        if len(particles) < 2:
            raise OctreeError("Must be at least two particles to build children")
        if self.depth >= self.limits.max_depth or domain.size() < self.limits.min_domain_size:
            raise SubdivisionLimitError(
                f"Cannot split node at depth {self.depth} (domain edge {domain.size():.3g}): "
                f"{len(particles)} particles are too close together"
            )
        octants: list[list[int]] = [[] for _ in range(8)]
        for pid in particles:
            octants[domain.octant_index(self.table[pid].pos)].append(pid)
        return [
            Node(
                self.table,
                bucket,
                domain.octant_domain(i),
                depth=self.depth + 1,
                limits=self.limits,
            )
            for i, bucket in enumerate(octants)
            if bucket
        ]

    def add_particle(self, pid: int) -> None:
        """
        Insert a particle id into this subtree.

        Leaves split into children; internal nodes delegate to the child whose
        domain holds the particle, or grow a new leaf child for its octant.
        Nothing is modified when a check fails.

        Raises:
            OctreeError: If the particle is outside the domain or already held
            SubdivisionLimitError: If the insertion would split past the cutoff
        """
        pos = self.table[pid].pos
        if not self.domain.is_in_domain(pos):
            raise OctreeError("Particle is not in the Node's Domain")
        if self.contains(pid):
            raise OctreeError("Particle is already held by the Node")

        if not self.particles:
            # Emptied root.
            pass
        elif self.is_leaf():
            self.children = self.build_children(self.particles + [pid], self.domain)
        else:
            for child in self.children:
                if child.domain.is_in_domain(pos):
                    child.add_particle(pid)
                    break
            else:
                index = self.domain.octant_index(pos)
                self.children.append(
                    Node.leaf(
                        self.table,
                        pid,
                        self.domain.octant_domain(index),
                        depth=self.depth + 1,
                        limits=self.limits,
                    )
                )
        self.particles.append(pid)
        self._dirty = True

    def remove_particle(self, pid: int) -> None:
        """
        Remove a particle id from this subtree.

        Children left without particles are dropped. An internal node is never
        turned back into a leaf, even if a single particle remains under it.

        Raises:
            OctreeError: If the particle is not held
        """
        if not self.contains(pid):
            raise OctreeError("Particle is not held in the Node")
        self.particles.remove(pid)
        for child in self.children:
            if child.contains(pid):
                child.remove_particle(pid)
                if not child.particles:
                    self.children.remove(child)
                break
        self._dirty = True

    def invalidate(self) -> None:
        """Mark the whole subtree dirty (positions changed outside the tree)."""
        self._dirty = True
        for child in self.children:
            child.invalidate()

    def update_node_values(self) -> None:
        """Recompute mass and center of mass bottom-up for dirty nodes."""
        if not self.particles:
            self._mass = 0.0
            self._center_of_mass = Vec3()
        elif self.is_leaf():
            particle = self.table[self.particles[0]]
            self._mass = particle.mass
            self._center_of_mass = particle.pos
        else:
            for child in self.children:
                if child._dirty:
                    child.update_node_values()
            self._mass = self.compute_mass(self.children)
            self._center_of_mass = self.compute_center_of_mass(self.children)
        self._dirty = False

    def rebalance_node(self, history: list["Node"]) -> list[int]:
        """
        Move particles that left their leaf's domain.

        ``history`` is the chain of ancestors from the topmost one down to
        this node. Works in two passes: every particle that left its leaf is
        first taken out of ``history[0]``, then each one is re-inserted below
        the nearest ancestor whose domain still holds it. Particles no
        ancestor holds are reported as escaped.

        Nothing is re-inserted while a displaced particle is still sitting in
        a leaf, so a leaf split only ever sees particles inside its domain.

        Returns:
            Ids of the escaped particles

        Raises:
            OctreeError: If the last entry of ``history`` is not this node
            SubdivisionLimitError: If a re-inserted particle lands on top of
                another one; that particle is no longer held
        """
        if not history or history[-1] is not self:
            raise OctreeError("Rebalance history must end with the node being rebalanced")

        displaced: list[tuple[int, list[Node]]] = []
        self._collect_displaced(history, displaced)
        top = history[0]
        for pid, _ in displaced:
            top.remove_particle(pid)

        escaped: list[int] = []
        failure: OctreeError | None = None
        for pid, chain in displaced:
            pos = self.table[pid].pos
            ancestor = next((n for n in reversed(chain[:-1]) if n.domain.is_in_domain(pos)), None)
            if ancestor is None:
                escaped.append(pid)
                continue
            # Nodes under the ancestor may have been pruned; descending from the
            # top reaches the same octant.
            try:
                top.add_particle(pid)
            except SubdivisionLimitError as exc:
                if failure is None:
                    failure = exc
                continue
            logger.debug("rebalance: particle %d moved up %d level(s)", pid, chain[-1].depth - ancestor.depth)
        if failure is not None:
            raise failure
        return escaped

    def _collect_displaced(self, history: list["Node"], out: list[tuple[int, list["Node"]]]) -> None:
        if self.is_leaf():
            if self.particles and not self.domain.is_in_domain(self.table[self.particles[0]].pos):
                out.append((self.particles[0], history))
            return
        for child in self.children:
            child._collect_displaced(history + [child], out)

    def iter_nodes(self) -> Iterator["Node"]:
        yield self
        for child in self.children:
            yield from child.iter_nodes()

    def iter_leaves(self) -> Iterator["Node"]:
        for node in self.iter_nodes():
            if node.is_leaf() and node.particles:
                yield node

    def node_count(self) -> int:
        return sum(1 for _ in self.iter_nodes())

    def subtree_depth(self) -> int:
        return max(node.depth for node in self.iter_nodes())

    def __repr__(self) -> str:
        kind = "leaf" if self.is_leaf() else f"internal, {len(self.children)} children"
        return f"Node({kind}, depth={self.depth}, particles={len(self.particles)})"


@dataclass
class OctreeStats:
    """Shape of an octree at one point in time."""
    particle_count: int
    node_count: int
    leaf_count: int
    depth: int
    mass: float


class Octree:
    """
    Octree over a set of particles.

    Built once from the initial particles; afterwards kept current through
    ``insert``, ``remove`` and ``rebalance_tree`` (call the latter once per
    simulation step, after positions have been integrated).

    The tree may end up empty when every particle is removed or has left the
    domain. An empty tree has zero mass and its center of mass at the origin.
    """

    def __init__(
        self,
        particles: Iterable[Particle],
        domain: Domain,
        *,
        max_depth: int = MAX_DEPTH,
        min_domain_size: float = MIN_DOMAIN_SIZE,
    ) -> None:
        particles = list(particles)
        if not particles:
            raise OctreeError("Must be at least one particle in Octree")
        for particle in particles:
            if not domain.is_in_domain(particle.pos):
                raise OctreeError(f"{particle!r} is not in the Octree's Domain")
        self.limits = SubdivisionLimits(max_depth=int(max_depth), min_domain_size=float(min_domain_size))
        self.table = ParticleTable()
        ids = [self.table.add(p) for p in particles]
        self.root = Node(self.table, ids, domain, limits=self.limits)

    @property
    def domain(self) -> Domain:
        return self.root.domain

    @property
    def mass(self) -> float:
        return self.root.mass

    @property
    def center_of_mass(self) -> Vec3:
        return self.root.center_of_mass

    def __len__(self) -> int:
        return len(self.root.particles)

    def __contains__(self, particle: Particle) -> bool:
        return self.contains(particle)

    def id_of(self, particle: Particle) -> int | None:
        return self.table.id_of(particle)

    def contains(self, particle: Particle) -> bool:
        pid = self.table.id_of(particle)
        return pid is not None and self.root.contains(pid)

    def particles(self) -> list[Particle]:
        return [self.table[pid] for pid in self.root.particles]

    def insert(self, particle: Particle) -> int:
        """
        Add a particle and return its id.

        Raises:
            OctreeError: If the particle is already held or outside the domain
        """
        if self.table.id_of(particle) is not None:
            raise OctreeError("Particle is already held by the Octree")
        if not self.domain.is_in_domain(particle.pos):
            raise OctreeError("Particle is not in the Octree's Domain")
        pid = self.table.add(particle)
        try:
            self.root.add_particle(pid)
        except OctreeError:
            self.table.pop(pid)
            raise
        return pid

    def remove(self, particle: Particle) -> None:
        pid = self.table.id_of(particle)
        if pid is None:
            raise OctreeError("Particle is not held by the Octree")
        self.root.remove_particle(pid)
        self.table.pop(pid)

    def rebalance_tree(self) -> list[Particle]:
        """
        Re-home every particle that moved out of its leaf since the last call.

        Returns:
            Particles that left the root domain; they are no longer held
        """
        self.root.invalidate()
        try:
            escaped_ids = self.root.rebalance_node([self.root])
        except OctreeError:
            self._drop_orphans()
            raise
        escaped = [self.table.pop(pid) for pid in escaped_ids]
        if escaped:
            logger.warning("%d particle(s) left the octree domain", len(escaped))
        self.root.update_node_values()
        return escaped

    def _drop_orphans(self) -> None:
        held = set(self.root.particles)
        for pid in [pid for pid in self.table if pid not in held]:
            self.table.pop(pid)

    def leaves(self) -> Iterator[Node]:
        return self.root.iter_leaves()

    def stats(self) -> OctreeStats:
        nodes = list(self.root.iter_nodes())
        return OctreeStats(
            particle_count=len(self.root.particles),
            node_count=len(nodes),
            leaf_count=sum(1 for n in nodes if n.is_leaf() and n.particles),
            depth=self.root.subtree_depth(),
            mass=self.root.mass,
        )
