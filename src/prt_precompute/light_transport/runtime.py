"""Shading from precomputed light and transport coefficients."""

from typing import Optional

import numpy as np

from .spherical_harmonics import N_SH_COEFFS


class RuntimeEvaluator:
    """Reconstructs colour as the per-channel dot product of light and transport.

    With the raw transport (no BRDF factor) the result is the irradiance at
    the surface; pass ``albedo`` to get Lambertian outgoing radiance, i.e.
    the irradiance scaled by ``albedo / pi``. A constant environment L on an
    unoccluded upward plane then shades to ``pi * L`` raw, ``albedo * L``
    with albedo.
    """

    def __init__(
        self,
        scene,
        light_coeffs: np.ndarray,
        transport: np.ndarray,
        albedo: Optional[float] = None,
        background: Optional[np.ndarray] = None
    ):
        """Initialize evaluator.

        Args:
            scene: MeshScene used to resolve camera rays
            light_coeffs: Light coefficients, shape (9, 3)
            transport: Transport coefficients, shape (9, n_vertices)
            albedo: Diffuse albedo; None returns the raw dot product
            background: Colour returned for missed rays (black if None)
        """
        light_coeffs = np.asarray(light_coeffs, dtype=np.float64)
        transport = np.asarray(transport, dtype=np.float64)

        if light_coeffs.shape != (N_SH_COEFFS, 3):
            raise ValueError(f"light_coeffs must have shape ({N_SH_COEFFS}, 3), got {light_coeffs.shape}")
        if transport.shape != (N_SH_COEFFS, scene.vertex_count):
            raise ValueError(
                f"transport must have shape ({N_SH_COEFFS}, {scene.vertex_count}), "
                f"got {transport.shape}"
            )

        self.scene = scene
        self.light_coeffs = light_coeffs
        self.transport = transport
        self.albedo = albedo
        self.scale = 1.0 if albedo is None else float(albedo) / np.pi
        self.background = (np.zeros(3) if background is None
                           else np.asarray(background, dtype=np.float64))

    def vertex_colors(self) -> np.ndarray:
        """RGB colour of every vertex, shape (n_vertices, 3)."""
        return self.scale * (self.transport.T @ self.light_coeffs)

    def shade_hit(self, vertex_indices: np.ndarray, barycentric: np.ndarray) -> np.ndarray:
        """Interpolated colour at a hit given its triangle corners and weights."""
        corner_colors = self.transport[:, vertex_indices].T @ self.light_coeffs  # (3, 3)
        return self.scale * (np.asarray(barycentric) @ corner_colors)

    def shade(self, origin, direction) -> np.ndarray:
        """Colour seen along a single ray."""
        hit = self.scene.ray_intersect(origin, direction)
        if hit is None:
            return self.background.copy()
        return self.shade_hit(hit.vertex_indices, hit.barycentric)

    def shade_rays(self, origins: np.ndarray, directions: np.ndarray) -> np.ndarray:
        """Colour seen along a batch of rays, shape (R, 3)."""
        tri_ids, bary, _ = self.scene.intersect(origins, directions)
        colors = np.tile(self.background, (len(tri_ids), 1))

        hit = tri_ids >= 0
        if hit.any():
            vertex_colors = self.vertex_colors()
            corners = self.scene.faces[tri_ids[hit]]  # (H, 3)
            colors[hit] = np.einsum('hc,hck->hk', bary[hit], vertex_colors[corners])
        return colors
