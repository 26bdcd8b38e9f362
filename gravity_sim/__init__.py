"""N-body gravity simulation with an incrementally maintained octree."""

from gravity_sim.params import SimParams
from gravity_sim.physics.octree import Domain, Octree, OctreeError, SubdivisionLimitError
from gravity_sim.physics.particle import Particle, Vec3

__version__ = "0.1.0"

__all__ = [
    "Domain",
    "Octree",
    "OctreeError",
    "Particle",
    "SimParams",
    "SubdivisionLimitError",
    "Vec3",
]
