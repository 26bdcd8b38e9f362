"""
Point-mass particle model.

This module provides the payload type held by the octree and driven by the
simulation loop:
- Vec3: small immutable 3-vector
- Particle: position, velocity and mass with the per-step update rules

Example:
    >>> from gravity_sim.physics.particle import Particle, Vec3
    >>> a = Particle(Vec3(0.0, 0.0, 0.0), Vec3(0.0, 0.0, 0.0), 1.0)
    >>> b = Particle(Vec3(1.0, 0.0, 0.0), Vec3(0.0, 0.0, 0.0), 1.0)
    >>> a.attract(b, g=1.0)
    >>> a.step()
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterator


GRAVITATIONAL_CONSTANT = 6.674e-11


@dataclass(frozen=True, slots=True)
class Vec3:
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    def __add__(self, other: "Vec3") -> "Vec3":
        return Vec3(self.x + other.x, self.y + other.y, self.z + other.z)

    def __sub__(self, other: "Vec3") -> "Vec3":
        return Vec3(self.x - other.x, self.y - other.y, self.z - other.z)

    def __mul__(self, factor: float) -> "Vec3":
        return Vec3(self.x * factor, self.y * factor, self.z * factor)

    __rmul__ = __mul__

    def __truediv__(self, factor: float) -> "Vec3":
        return Vec3(self.x / factor, self.y / factor, self.z / factor)

    def __iter__(self) -> Iterator[float]:
        yield self.x
        yield self.y
        yield self.z

    def scale(self, factor: float) -> "Vec3":
        return self * factor

    def magnitude(self) -> float:
        return math.sqrt(self.x * self.x + self.y * self.y + self.z * self.z)

    def as_tuple(self) -> tuple[float, float, float]:
        return self.x, self.y, self.z


class Particle:
    """
    A point mass.

    Particles compare by identity: two particles at the same place with the
    same mass are still distinct bodies, and the octree relies on that for
    membership tests.

    Attributes:
        pos: Current position
        vel: Current velocity (distance per step)
        mass: Mass, strictly positive
        radius_scale: Radius of a unit-mass particle
    """

    __slots__ = ("pos", "vel", "_mass", "radius_scale")

    def __init__(
        self,
        pos: Vec3 = Vec3(),
        vel: Vec3 = Vec3(),
        mass: float = 1.0,
        *,
        radius_scale: float = 1.0,
    ) -> None:
        self.pos = pos
        self.vel = vel
        self.mass = mass
        self.radius_scale = float(radius_scale)

    @property
    def mass(self) -> float:
        return self._mass

    @mass.setter
    def mass(self, value: float) -> None:
        value = float(value)
        if not value > 0.0:
            raise ValueError("Mass must be positive")
        self._mass = value

    @property
    def momentum(self) -> Vec3:
        return self.vel * self._mass

    @property
    def radius(self) -> float:
        # Uniform density sphere: volume grows linearly with mass.
        return self.radius_scale * self._mass ** (1.0 / 3.0)

    def step(self) -> None:
        """Advance the position by one step of the current velocity."""
        self.pos = self.pos + self.vel

    def attract(self, other: "Particle", g: float = GRAVITATIONAL_CONSTANT) -> None:
        """
        Accelerate this particle towards another one.

        a = G * m_other * (r_other - r_self) / |r_other - r_self|^3

        Coincident particles exert no force on each other (they are expected
        to have been merged by collision handling first).
        """
        dist = other.pos - self.pos
        radius = dist.magnitude()
        if radius == 0.0:
            return
        accel_factor = g * other.mass / (radius * radius * radius)
        self.vel = self.vel + dist.scale(accel_factor)

    def check_collision(self, other: "Particle") -> bool:
        """Return True if the two spheres touch or overlap."""
        dist = (self.pos - other.pos).magnitude()
        return dist <= self.radius + other.radius

    def collide(self, other: "Particle") -> None:
        """
        Absorb another particle, conserving mass and momentum.

        The merged body sits at the combined center of mass and moves with
        the combined momentum divided by the combined mass.
        """
        total = self._mass + other.mass
        pos = self.pos + (other.pos - self.pos).scale(other.mass / total)
        vel = (self.momentum + other.momentum) / total
        self.pos = pos
        self.vel = vel
        self.mass = total

    def __repr__(self) -> str:
        return (
            f"Particle(pos=({self.pos.x:.4g}, {self.pos.y:.4g}, {self.pos.z:.4g}), "
            f"vel=({self.vel.x:.4g}, {self.vel.y:.4g}, {self.vel.z:.4g}), mass={self._mass:.4g})"
        )
