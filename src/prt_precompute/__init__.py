"""Precomputed radiance transfer: SH light and transport precomputation."""

from .light_transport.cubemap import load_cubemap_faces, project_cubemap_to_sh
from .light_transport.runtime import RuntimeEvaluator
from .scene.mesh_scene import MeshScene
from .pipeline import PRTPrecomputer
from .utils.config import PRTConfig

__version__ = "0.1.0"
__all__ = [
    "load_cubemap_faces",
    "project_cubemap_to_sh",
    "RuntimeEvaluator",
    "MeshScene",
    "PRTPrecomputer",
    "PRTConfig",
]
