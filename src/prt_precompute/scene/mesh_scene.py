"""Triangle mesh scene and ray visibility queries."""

import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

import numpy as np
import trimesh
from numba import njit, prange

# Intersections closer than this to the ray origin are ignored
DEFAULT_RAY_EPSILON = 1e-4

# Determinant threshold for parallel ray/triangle pairs
_PARALLEL_EPS = 1e-12


@dataclass
class HitRecord:
    """Closest intersection of a ray with the scene.

    Attributes:
        triangle: Index of the hit triangle
        vertex_indices: The triangle's three vertex indices
        barycentric: Weights of those three vertices at the hit point
        distance: Ray parameter of the hit
    """
    triangle: int
    vertex_indices: np.ndarray
    barycentric: np.ndarray
    distance: float


@njit(cache=True)
def _intersect_triangle(ox, oy, oz, dx, dy, dz, v0, e1, e2):
    """Moller-Trumbore test, returns (t, b1, b2); t < 0 on miss."""
    px = dy * e2[2] - dz * e2[1]
    py = dz * e2[0] - dx * e2[2]
    pz = dx * e2[1] - dy * e2[0]
    det = e1[0] * px + e1[1] * py + e1[2] * pz
    if abs(det) < _PARALLEL_EPS:
        return -1.0, 0.0, 0.0
    inv_det = 1.0 / det

    tx = ox - v0[0]
    ty = oy - v0[1]
    tz = oz - v0[2]
    b1 = (tx * px + ty * py + tz * pz) * inv_det
    if b1 < 0.0 or b1 > 1.0:
        return -1.0, 0.0, 0.0

    qx = ty * e1[2] - tz * e1[1]
    qy = tz * e1[0] - tx * e1[2]
    qz = tx * e1[1] - ty * e1[0]
    b2 = (dx * qx + dy * qy + dz * qz) * inv_det
    if b2 < 0.0 or b1 + b2 > 1.0:
        return -1.0, 0.0, 0.0

    t = (e2[0] * qx + e2[1] * qy + e2[2] * qz) * inv_det
    return t, b1, b2


@njit(parallel=True, cache=True)
def _closest_hits(origins, directions, v0, e1, e2, t_min, t_max):
    n_rays = origins.shape[0]
    n_tris = v0.shape[0]
    tri_ids = np.full(n_rays, -1, dtype=np.int64)
    bary = np.zeros((n_rays, 3), dtype=np.float64)
    dist = np.full(n_rays, np.inf, dtype=np.float64)

    for r in prange(n_rays):
        ox, oy, oz = origins[r, 0], origins[r, 1], origins[r, 2]
        dx, dy, dz = directions[r, 0], directions[r, 1], directions[r, 2]
        best_t = t_max
        best_tri = -1
        best_b1 = 0.0
        best_b2 = 0.0
        for i in range(n_tris):
            t, b1, b2 = _intersect_triangle(ox, oy, oz, dx, dy, dz, v0[i], e1[i], e2[i])
            if t > t_min and t < best_t:
                best_t = t
                best_tri = i
                best_b1 = b1
                best_b2 = b2
        if best_tri >= 0:
            tri_ids[r] = best_tri
            dist[r] = best_t
            bary[r, 0] = 1.0 - best_b1 - best_b2
            bary[r, 1] = best_b1
            bary[r, 2] = best_b2

    return tri_ids, bary, dist


@njit(parallel=True, cache=True)
def _any_hits(origins, directions, v0, e1, e2, t_min, t_max):
    n_rays = origins.shape[0]
    n_tris = v0.shape[0]
    hit = np.zeros(n_rays, dtype=np.bool_)

    for r in prange(n_rays):
        ox, oy, oz = origins[r, 0], origins[r, 1], origins[r, 2]
        dx, dy, dz = directions[r, 0], directions[r, 1], directions[r, 2]
        for i in range(n_tris):
            t, b1, b2 = _intersect_triangle(ox, oy, oz, dx, dy, dz, v0[i], e1[i], e2[i])
            if t > t_min and t < t_max:
                hit[r] = True
                break

    return hit


class MeshScene:
    """Static triangle mesh with per-vertex normals and ray queries.

    Vertex order is taken verbatim from the source mesh so that transport
    columns, the mesh and the persisted per-triangle file stay in sync.

    Ray queries test every triangle.
    TODO: add a BVH over triangles for meshes beyond a few thousand faces.

    Example:
        >>> scene = MeshScene.load("bunny.obj")
        >>> hit = scene.ray_intersect([0, 0, 5], [0, 0, -1])
        >>> hit.vertex_indices if hit else None
    """

    def __init__(
        self,
        vertices: np.ndarray,
        faces: np.ndarray,
        normals: Optional[np.ndarray] = None,
        ray_epsilon: float = DEFAULT_RAY_EPSILON
    ):
        """Initialize scene.

        Args:
            vertices: Nx3 array of vertex positions
            faces: Mx3 array of vertex indices per triangle
            normals: Nx3 array of vertex normals (area-weighted face normals if None)
            ray_epsilon: Minimum hit distance for ray queries
        """
        vertices = np.ascontiguousarray(vertices, dtype=np.float64)
        faces = np.ascontiguousarray(faces, dtype=np.int64)

        if vertices.ndim != 2 or vertices.shape[1] != 3:
            raise ValueError(f"vertices must have shape (N, 3), got {vertices.shape}")
        if faces.ndim != 2 or faces.shape[1] != 3:
            raise ValueError(f"faces must have shape (M, 3), got {faces.shape}")
        if faces.size and (faces.min() < 0 or faces.max() >= len(vertices)):
            raise ValueError("faces reference vertices outside the vertex array")

        self.vertices = vertices
        self.faces = faces
        self.ray_epsilon = float(ray_epsilon)

        n_unreferenced = len(vertices) - len(np.unique(faces))
        if n_unreferenced > 0:
            warnings.warn(
                f"{n_unreferenced} vertices are not referenced by any triangle; "
                "their transport is computed but not written to the transport file"
            )

        if normals is None:
            normals = self._compute_vertex_normals(vertices, faces)
        normals = np.asarray(normals, dtype=np.float64)
        if normals.shape != vertices.shape:
            raise ValueError(
                f"normals must match vertices shape {vertices.shape}, got {normals.shape}"
            )
        lengths = np.linalg.norm(normals, axis=1, keepdims=True)
        self.normals = np.ascontiguousarray(
            np.where(lengths > 0, normals / np.maximum(lengths, 1e-20), 0.0)
        )

        # Precomputed edges for the intersection kernels
        tri = vertices[faces]
        self._v0 = np.ascontiguousarray(tri[:, 0])
        self._e1 = np.ascontiguousarray(tri[:, 1] - tri[:, 0])
        self._e2 = np.ascontiguousarray(tri[:, 2] - tri[:, 0])

    @staticmethod
    def _compute_vertex_normals(vertices: np.ndarray, faces: np.ndarray) -> np.ndarray:
        tri = vertices[faces]
        face_normals = np.cross(tri[:, 1] - tri[:, 0], tri[:, 2] - tri[:, 0])
        normals = np.zeros_like(vertices)
        for k in range(3):
            np.add.at(normals, faces[:, k], face_normals)
        return normals

    @classmethod
    def load(cls, file_path: Path | str, ray_epsilon: float = DEFAULT_RAY_EPSILON) -> "MeshScene":
        """Load a mesh file (OBJ, PLY, STL, ...) with trimesh.

        Raises:
            FileNotFoundError: If file doesn't exist
            ValueError: If file cannot be loaded as a triangle mesh
        """
        file_path = Path(file_path)
        if not file_path.exists():
            raise FileNotFoundError(f"Mesh file not found: {file_path}")

        try:
            mesh = trimesh.load(file_path, process=False)
            # Handle case where trimesh.load returns a Scene instead of Trimesh
            if isinstance(mesh, trimesh.Scene):
                mesh = trimesh.util.concatenate(
                    [geom for geom in mesh.geometry.values()]
                )
        except Exception as e:
            raise ValueError(f"Failed to load mesh from {file_path}: {e}")

        if not isinstance(mesh, trimesh.Trimesh) or len(mesh.faces) == 0:
            raise ValueError(f"No triangles found in {file_path}")

        return cls.from_trimesh(mesh, ray_epsilon=ray_epsilon)

    @classmethod
    def from_trimesh(cls, mesh: trimesh.Trimesh, ray_epsilon: float = DEFAULT_RAY_EPSILON) -> "MeshScene":
        """Wrap a trimesh object, keeping its vertex order.

        Normals are recomputed area-weighted from the faces, the same as for
        scenes built from arrays.
        """
        return cls(
            vertices=np.asarray(mesh.vertices),
            faces=np.asarray(mesh.faces),
            ray_epsilon=ray_epsilon
        )

    @property
    def vertex_count(self) -> int:
        return len(self.vertices)

    @property
    def triangle_count(self) -> int:
        return len(self.faces)

    def _prepare_rays(self, origins, directions) -> Tuple[np.ndarray, np.ndarray]:
        origins = np.ascontiguousarray(np.asarray(origins, dtype=np.float64).reshape(-1, 3))
        directions = np.asarray(directions, dtype=np.float64).reshape(-1, 3)
        if origins.shape != directions.shape:
            raise ValueError(
                f"origins {origins.shape} and directions {directions.shape} differ in shape"
            )
        norms = np.linalg.norm(directions, axis=1, keepdims=True)
        directions = np.ascontiguousarray(directions / np.maximum(norms, 1e-20))
        return origins, directions

    def intersect(
        self,
        origins: np.ndarray,
        directions: np.ndarray,
        t_max: float = np.inf
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Closest-hit query for a batch of rays.

        Args:
            origins: Ray origins, shape (R, 3)
            directions: Ray directions, shape (R, 3) (normalised internally)
            t_max: Maximum hit distance

        Returns:
            Tuple of (triangle_ids, barycentric, distances) with shapes
            (R,), (R, 3), (R,). Missed rays have triangle id -1, zero
            barycentric weights and infinite distance.
        """
        origins, directions = self._prepare_rays(origins, directions)
        if len(origins) == 0 or self.triangle_count == 0:
            n = len(origins)
            return (np.full(n, -1, dtype=np.int64), np.zeros((n, 3)),
                    np.full(n, np.inf))
        return _closest_hits(origins, directions, self._v0, self._e1, self._e2,
                             self.ray_epsilon, float(t_max))

    def occluded(
        self,
        origins: np.ndarray,
        directions: np.ndarray,
        t_max: float = np.inf
    ) -> np.ndarray:
        """Any-hit query, returns a boolean array of shape (R,)."""
        origins, directions = self._prepare_rays(origins, directions)
        if len(origins) == 0 or self.triangle_count == 0:
            return np.zeros(len(origins), dtype=bool)
        return _any_hits(origins, directions, self._v0, self._e1, self._e2,
                         self.ray_epsilon, float(t_max))

    def ray_intersect(self, origin, direction) -> Optional[HitRecord]:
        """Closest hit of a single ray, or None when nothing is hit."""
        tri_ids, bary, dist = self.intersect(
            np.asarray(origin, dtype=np.float64).reshape(1, 3),
            np.asarray(direction, dtype=np.float64).reshape(1, 3)
        )
        tri = int(tri_ids[0])
        if tri < 0:
            return None
        return HitRecord(
            triangle=tri,
            vertex_indices=self.faces[tri].copy(),
            barycentric=bary[0].copy(),
            distance=float(dist[0])
        )

    def get_info(self) -> dict:
        """Summary of the scene for metadata."""
        return {
            "vertex_count": self.vertex_count,
            "triangle_count": self.triangle_count,
            "bbox_min": self.vertices.min(axis=0).tolist() if self.vertex_count else None,
            "bbox_max": self.vertices.max(axis=0).tolist() if self.vertex_count else None,
            "ray_epsilon": self.ray_epsilon,
        }
