"""Scene geometry and visibility queries."""

from .mesh_scene import MeshScene, HitRecord, DEFAULT_RAY_EPSILON

__all__ = ["MeshScene", "HitRecord", "DEFAULT_RAY_EPSILON"]
