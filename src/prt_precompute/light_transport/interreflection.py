"""Multi-bounce interreflection for transport coefficients.

Every bounce re-samples the sphere at each vertex. Rays that hit the mesh
pick up the transport of the hit point, interpolated barycentrically from
the transport as it stood before the bounce began, weighted by the cosine
at the emitting vertex. Contributions go to a separate buffer that is only
added to the running transport once the whole bounce is done.
"""

from typing import Callable, List, Optional

import numpy as np
from tqdm import tqdm

from .spherical_harmonics import N_SH_COEFFS, sample_stratified_sphere


class InterreflectionAccumulator:
    """Adds indirect bounces to a transport matrix.

    Example:
        >>> accumulator = InterreflectionAccumulator(scene, 100, rng)
        >>> transport = accumulator.run(shadowed_transport, bounces=2)
    """

    def __init__(
        self,
        scene,
        sample_count: int,
        rng: np.random.Generator,
        vertex_batch_size: int = 256,
        show_progress: bool = False
    ):
        """Initialize accumulator.

        Args:
            scene: MeshScene used for ray queries
            sample_count: Monte Carlo samples per vertex and bounce
            rng: Generator shared by the whole run
            vertex_batch_size: Vertices evaluated per batch
            show_progress: Show tqdm progress bars
        """
        self.scene = scene
        self.sample_count = sample_count
        self.rng = rng
        self.vertex_batch_size = vertex_batch_size
        self.show_progress = show_progress

        # zeroth coefficient of every vertex after each committed bounce
        self.history: List[np.ndarray] = []

    def bounce(self, previous_transport: np.ndarray) -> np.ndarray:
        """Compute one bounce worth of transport.

        Args:
            previous_transport: Transport before this bounce, shape (9, V).
                Only read, never modified.

        Returns:
            Bounce buffer, shape (9, V)
        """
        scene = self.scene
        n_vertices = scene.vertex_count
        if previous_transport.shape != (N_SH_COEFFS, n_vertices):
            raise ValueError(
                f"Transport must have shape {(N_SH_COEFFS, n_vertices)}, "
                f"got {previous_transport.shape}"
            )

        snapshot = previous_transport.copy()
        snapshot.setflags(write=False)

        buffer = np.zeros_like(snapshot)

        starts = range(0, n_vertices, self.vertex_batch_size)
        if self.show_progress:
            starts = tqdm(starts, desc="Interreflection", unit="batch", leave=False)

        for start in starts:
            stop = min(start + self.vertex_batch_size, n_vertices)
            buffer[:, start:stop] = self._bounce_batch(snapshot, start, stop)

        return buffer

    def _bounce_batch(self, snapshot: np.ndarray, start: int, stop: int) -> np.ndarray:
        scene = self.scene
        positions = scene.vertices[start:stop]
        normals = scene.normals[start:stop]
        n_batch = stop - start

        directions, weight = sample_stratified_sphere(
            self.sample_count, self.rng, batch_shape=(n_batch,)
        )
        n_dirs = directions.shape[1]

        cos_theta = np.einsum('bsk,bk->bs', directions, normals)
        upper = cos_theta > 0.0

        contributions = np.zeros((n_batch, n_dirs, N_SH_COEFFS), dtype=np.float64)
        if upper.any():
            ray_origins = np.broadcast_to(positions[:, None, :], directions.shape)[upper]
            tri_ids, bary, _ = scene.intersect(ray_origins, directions[upper])

            hit = tri_ids >= 0
            if hit.any():
                corners = scene.faces[tri_ids[hit]]  # (H, 3)
                # (H, 3, 9) transport at the corners, weighted and summed
                corner_sh = snapshot[:, corners].transpose(1, 2, 0)
                interpolated = np.einsum('hc,hck->hk', bary[hit], corner_sh)

                upper_contrib = np.zeros((len(tri_ids), N_SH_COEFFS), dtype=np.float64)
                upper_contrib[hit] = interpolated * cos_theta[upper][hit][:, None]
                contributions[upper] = upper_contrib

        return weight * contributions.sum(axis=1).T

    def run(
        self,
        transport: np.ndarray,
        bounces: int,
        bounce_callback: Optional[Callable[[int, np.ndarray], None]] = None
    ) -> np.ndarray:
        """Apply ``bounces`` bounces to a base transport matrix.

        Args:
            transport: Base (shadowed) transport, shape (9, V)
            bounces: Number of bounces
            bounce_callback: Called with (bounce_index, transport) after each commit

        Returns:
            Transport including all bounces, shape (9, V)
        """
        if bounces < 1:
            raise ValueError(f"bounces must be >= 1, got {bounces}")

        current = np.array(transport, dtype=np.float64, copy=True)
        self.history = [current[0].copy()]

        bounce_iter = range(1, bounces + 1)
        if self.show_progress:
            bounce_iter = tqdm(bounce_iter, desc="Bounces", unit="bounce")

        for bounce_index in bounce_iter:
            buffer = self.bounce(current)
            # commit only once every vertex has finished this bounce
            current = current + buffer
            self.history.append(current[0].copy())

            if bounce_callback:
                bounce_callback(bounce_index, current)

        return current
