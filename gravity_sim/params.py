from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from gravity_sim.physics.octree import MAX_DEPTH, MIN_DOMAIN_SIZE
from gravity_sim.physics.particle import GRAVITATIONAL_CONSTANT


@dataclass(slots=True)
class SimParams:
    particle_count: int = 200
    position_range: float = 100.0  # initial positions in [-range, +range)
    velocity_range: float = 0.2  # initial velocity components in [-range, +range)
    particle_mass: float = 1.0
    gravitational_constant: float = GRAVITATIONAL_CONSTANT
    radius_scale: float = 1.0

    collisions_enabled: bool = True
    tree_enabled: bool = True
    bounds: float = 200.0  # octree root half-size: [-bounds, +bounds)
    rebalance_every: int = 1
    max_depth: int = MAX_DEPTH
    min_domain_size: float = MIN_DOMAIN_SIZE

    timesteps: int = 100
    seed: int = 1

    def clamp(self) -> "SimParams":
        self.particle_count = max(1, int(self.particle_count))
        self.position_range = max(1e-6, float(self.position_range))
        self.velocity_range = max(0.0, float(self.velocity_range))
        self.particle_mass = max(1e-12, float(self.particle_mass))
        self.gravitational_constant = max(0.0, float(self.gravitational_constant))
        self.radius_scale = max(0.0, float(self.radius_scale))
        self.collisions_enabled = bool(self.collisions_enabled)
        self.tree_enabled = bool(self.tree_enabled)
        self.bounds = max(1e-6, float(self.bounds))
        self.rebalance_every = max(1, int(self.rebalance_every))
        self.max_depth = max(1, min(64, int(self.max_depth)))
        self.min_domain_size = max(0.0, float(self.min_domain_size))
        self.timesteps = max(0, int(self.timesteps))
        self.seed = int(self.seed)
        return self

    def validate(self) -> list[str]:
        warnings: list[str] = []

        if self.tree_enabled and self.position_range >= self.bounds:
            warnings.append("position_range >= bounds: some particles start outside the octree domain.")
        if not self.tree_enabled and self.rebalance_every != 1:
            warnings.append("rebalance_every ignored while tree_enabled is false.")
        if self.collisions_enabled and self.radius_scale <= 0.0:
            warnings.append("radius_scale is 0: only coincident particles will collide.")
        if self.gravitational_constant == 0.0:
            warnings.append("gravitational_constant is 0: particles move in straight lines.")
        if self.tree_enabled and (2.0 * self.bounds) / (2.0 ** self.max_depth) > self.min_domain_size > 0.0:
            warnings.append("min_domain_size is never reached before max_depth.")

        return warnings

    @classmethod
    def load(cls, path: str | Path) -> "SimParams":
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError("Params file must contain a JSON object.")
        filtered: dict[str, Any] = {k: v for k, v in data.items() if k in cls.__annotations__}
        return cls(**filtered).clamp()

    def save(self, path: str | Path) -> None:
        Path(path).write_text(json.dumps(asdict(self), indent=2, ensure_ascii=False), encoding="utf-8")
