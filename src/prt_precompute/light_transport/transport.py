"""Per-vertex transport functions projected onto spherical harmonics.

A transport policy maps an incoming direction at a surface vertex to the
fraction of light arriving from it. Policies are resolved once from their
configuration name and then evaluated on whole batches of sample
directions, so the sampling loop itself never branches on the policy.
"""

from dataclasses import dataclass
from typing import Optional, Union

import numpy as np
from tqdm import tqdm

from .spherical_harmonics import N_SH_COEFFS, project_to_sh, sample_stratified_sphere

POLICY_NAMES = ("unshadowed", "shadowed", "interreflection")


@dataclass(frozen=True)
class UnshadowedTransport:
    """T(w) = max(0, cos theta). No visibility queries."""

    name = "unshadowed"

    def evaluate(self, scene, origins: np.ndarray, normals: np.ndarray,
                 directions: np.ndarray) -> np.ndarray:
        """Evaluate T for sample directions.

        Args:
            scene: Scene providing ``occluded`` (unused here)
            origins: Vertex positions, shape (B, 3)
            normals: Vertex normals, shape (B, 3)
            directions: Sample directions, shape (B, S, 3)

        Returns:
            Transport values, shape (B, S)
        """
        cos_theta = np.einsum('bsk,bk->bs', directions, normals)
        return np.maximum(cos_theta, 0.0)


@dataclass(frozen=True)
class ShadowedTransport:
    """T(w) = cos theta when the upper hemisphere direction is unoccluded."""

    name = "shadowed"

    def evaluate(self, scene, origins: np.ndarray, normals: np.ndarray,
                 directions: np.ndarray) -> np.ndarray:
        cos_theta = np.einsum('bsk,bk->bs', directions, normals)
        values = np.zeros_like(cos_theta)

        upper = cos_theta > 0.0
        if not upper.any():
            return values

        ray_origins = np.broadcast_to(origins[:, None, :], directions.shape)[upper]
        blocked = scene.occluded(ray_origins, directions[upper])
        values[upper] = np.where(blocked, 0.0, cos_theta[upper])
        return values


@dataclass(frozen=True)
class InterreflectionTransport(ShadowedTransport):
    """Shadowed base pass followed by ``bounces`` indirect bounces."""

    bounces: int = 1
    name = "interreflection"

    def __post_init__(self):
        if self.bounces < 1:
            raise ValueError(f"bounces must be >= 1 for interreflection, got {self.bounces}")


TransportPolicy = Union[UnshadowedTransport, ShadowedTransport, InterreflectionTransport]


def resolve_transport_policy(name: str, bounces: int = 1) -> TransportPolicy:
    """Turn a policy name into its transport strategy.

    Args:
        name: One of ``unshadowed``, ``shadowed``, ``interreflection``
        bounces: Indirect bounce count, only used by ``interreflection``

    Raises:
        ValueError: For an unknown policy name or invalid bounce count
    """
    key = str(name).strip().lower()
    if key == "unshadowed":
        return UnshadowedTransport()
    if key == "shadowed":
        return ShadowedTransport()
    if key == "interreflection":
        return InterreflectionTransport(bounces=int(bounces))
    raise ValueError(
        f"Unsupported transport type: {name!r} (expected one of {', '.join(POLICY_NAMES)})"
    )


def project_transport(
    scene,
    policy: TransportPolicy,
    sample_count: int,
    rng: np.random.Generator,
    vertex_batch_size: int = 256,
    show_progress: bool = False
) -> np.ndarray:
    """Project every vertex's transport function onto the SH basis.

    Each vertex gets its own stratified sample set drawn from ``rng``;
    vertices are processed in fixed-size batches in index order.

    Args:
        scene: MeshScene (vertices, normals and visibility queries)
        policy: Resolved transport policy
        sample_count: Monte Carlo samples per vertex
        rng: Generator shared by the whole run
        vertex_batch_size: Vertices evaluated per batch
        show_progress: Show a tqdm progress bar

    Returns:
        Transport coefficients, shape (9, n_vertices)
    """
    n_vertices = scene.vertex_count
    transport = np.zeros((N_SH_COEFFS, n_vertices), dtype=np.float64)

    starts = range(0, n_vertices, vertex_batch_size)
    if show_progress:
        starts = tqdm(starts, desc=f"Projecting {policy.name} transport", unit="batch")

    for start in starts:
        stop = min(start + vertex_batch_size, n_vertices)
        positions = scene.vertices[start:stop]
        normals = scene.normals[start:stop]

        directions, weight = sample_stratified_sphere(sample_count, rng, batch_shape=(stop - start,))
        values = policy.evaluate(scene, positions, normals, directions)  # (B, S)
        transport[:, start:stop] = project_to_sh(directions, values, weight=weight)

    return transport


def precompute_transport(
    scene,
    policy: TransportPolicy,
    sample_count: int = 100,
    rng: Optional[np.random.Generator] = None,
    vertex_batch_size: int = 256,
    show_progress: bool = False
) -> np.ndarray:
    """Full transport precomputation for a policy, bounces included.

    Returns:
        Transport coefficients, shape (9, n_vertices)
    """
    from .interreflection import InterreflectionAccumulator

    if rng is None:
        rng = np.random.default_rng()

    transport = project_transport(
        scene, policy, sample_count, rng,
        vertex_batch_size=vertex_batch_size,
        show_progress=show_progress
    )

    if isinstance(policy, InterreflectionTransport):
        accumulator = InterreflectionAccumulator(
            scene, sample_count, rng,
            vertex_batch_size=vertex_batch_size,
            show_progress=show_progress
        )
        transport = accumulator.run(transport, policy.bounces)

    return transport
