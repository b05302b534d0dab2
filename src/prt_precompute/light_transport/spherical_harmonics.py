"""Spherical harmonics utilities for precomputed radiance transfer.

Real SH basis up to order 2 (9 coefficients), evaluated either vectorised
with NumPy or per-direction inside Numba kernels. Both paths share the same
constants and the same coefficient ordering, so light and transport vectors
projected by different code paths can always be dotted together.
"""

import numpy as np
from numba import njit
from typing import Optional, Tuple

# SH normalization constants
SH_C0 = 0.282094791773878   # 1 / (2 * sqrt(pi))
SH_C1 = 0.488602511902920   # sqrt(3 / (4 * pi))
SH_C2_0 = 1.092548430592079  # sqrt(15 / (4 * pi))
SH_C2_1 = 0.315391565252520  # sqrt(5 / (16 * pi))
SH_C2_2 = 0.546274215296040  # sqrt(15 / (16 * pi))

SH_ORDER = 2
N_SH_COEFFS = (SH_ORDER + 1) ** 2


def sh_index(l: int, m: int) -> int:
    """Flat coefficient index of band ``l``, order ``m`` (``-l <= m <= l``)."""
    if l < 0 or abs(m) > l:
        raise ValueError(f"Invalid SH band/order pair: l={l}, m={m}")
    return l * l + l + m


def get_n_sh_coeffs(order: int) -> int:
    """Get number of SH coefficients for given order.

    Args:
        order: SH order (l_max)

    Returns:
        Number of coefficients
    """
    return (order + 1) ** 2


def get_sh_order(n_coeffs: int) -> int:
    """Get SH order from number of coefficients.

    Raises:
        ValueError: If n_coeffs is not a valid SH coefficient count
    """
    order = int(np.sqrt(n_coeffs)) - 1
    if (order + 1) ** 2 != n_coeffs:
        raise ValueError(f"Invalid SH coefficient count: {n_coeffs}")
    return order


def spherical_to_cartesian(phi, theta) -> np.ndarray:
    """Convert spherical angles to unit vectors.

    ``theta`` is the polar angle from +Z, ``phi`` the azimuth from +X.

    Returns:
        Directions, shape (..., 3)
    """
    phi = np.asarray(phi, dtype=np.float64)
    theta = np.asarray(theta, dtype=np.float64)
    sin_theta = np.sin(theta)
    return np.stack([
        sin_theta * np.cos(phi),
        sin_theta * np.sin(phi),
        np.cos(theta)
    ], axis=-1)


def eval_sh_basis(directions: np.ndarray) -> np.ndarray:
    """Evaluate order-2 spherical harmonics basis functions.

    Args:
        directions: Unit vectors, shape (..., 3)

    Returns:
        SH basis values, shape (..., 9)
        Order: Y_0^0, Y_1^-1, Y_1^0, Y_1^1, Y_2^-2, Y_2^-1, Y_2^0, Y_2^1, Y_2^2
    """
    directions = np.asarray(directions, dtype=np.float64)
    orig_shape = directions.shape[:-1]

    dirs = directions.reshape(-1, 3)
    x, y, z = dirs[:, 0], dirs[:, 1], dirs[:, 2]

    coeffs = np.empty((dirs.shape[0], N_SH_COEFFS), dtype=np.float64)

    # l=0
    coeffs[:, 0] = SH_C0

    # l=1
    coeffs[:, 1] = SH_C1 * y
    coeffs[:, 2] = SH_C1 * z
    coeffs[:, 3] = SH_C1 * x

    # l=2
    coeffs[:, 4] = SH_C2_0 * x * y           # Y_2^-2
    coeffs[:, 5] = SH_C2_0 * y * z           # Y_2^-1
    coeffs[:, 6] = SH_C2_1 * (3.0 * z * z - 1.0)  # Y_2^0
    coeffs[:, 7] = SH_C2_0 * x * z           # Y_2^1
    coeffs[:, 8] = SH_C2_2 * (x * x - y * y)  # Y_2^2

    return coeffs.reshape(*orig_shape, N_SH_COEFFS)


@njit(cache=True)
def eval_sh_basis_scalar(x: float, y: float, z: float) -> np.ndarray:
    """Evaluate the order-2 SH basis for a single direction inside kernels."""
    coeffs = np.empty(9, dtype=np.float64)

    coeffs[0] = SH_C0

    coeffs[1] = SH_C1 * y
    coeffs[2] = SH_C1 * z
    coeffs[3] = SH_C1 * x

    coeffs[4] = SH_C2_0 * x * y
    coeffs[5] = SH_C2_0 * y * z
    coeffs[6] = SH_C2_1 * (3.0 * z * z - 1.0)
    coeffs[7] = SH_C2_0 * x * z
    coeffs[8] = SH_C2_2 * (x * x - y * y)

    return coeffs


def sample_stratified_sphere(
    n_samples: int,
    rng: np.random.Generator,
    batch_shape: Tuple[int, ...] = ()
) -> Tuple[np.ndarray, float]:
    """Draw stratified, uniformly distributed directions on the unit sphere.

    The unit square is split into ``sample_side x sample_side`` cells with
    ``sample_side = floor(sqrt(n_samples))``; one jittered sample is drawn
    per cell and mapped through ``theta = acos(2 * alpha - 1)``,
    ``phi = 2 * pi * beta``.

    Args:
        n_samples: Requested number of samples
        rng: Generator shared by the whole run
        batch_shape: Leading shape, one independent sample set per entry

    Returns:
        Tuple of (directions, weight) where directions has shape
        ``batch_shape + (sample_side ** 2, 3)`` and weight is the Monte Carlo
        estimator weight ``4 * pi / sample_side ** 2``.
    """
    sample_side = int(np.floor(np.sqrt(n_samples)))
    if sample_side < 1:
        raise ValueError(f"n_samples must be >= 1, got {n_samples}")

    jitter = rng.random(tuple(batch_shape) + (sample_side, sample_side, 2))
    cells = np.arange(sample_side, dtype=np.float64)

    alpha = (cells[:, None] + jitter[..., 0]) / sample_side
    beta = (cells[None, :] + jitter[..., 1]) / sample_side

    phi = 2.0 * np.pi * beta
    theta = np.arccos(np.clip(2.0 * alpha - 1.0, -1.0, 1.0))

    directions = spherical_to_cartesian(phi, theta)
    directions = directions.reshape(tuple(batch_shape) + (sample_side * sample_side, 3))

    weight = 4.0 * np.pi / (sample_side * sample_side)
    return directions, weight


def project_to_sh(
    directions: np.ndarray,
    values: np.ndarray,
    weight: Optional[float] = None
) -> np.ndarray:
    """Project sampled values onto the SH basis using Monte Carlo integration.

    Args:
        directions: Sample directions, shape (..., S, 3)
        values: Sample values, shape (..., S)
        weight: Estimator weight per sample (defaults to 4*pi/S)

    Returns:
        SH coefficients, shape (9, ...)
    """
    directions = np.asarray(directions, dtype=np.float64)
    values = np.asarray(values, dtype=np.float64)
    if values.shape != directions.shape[:-1]:
        raise ValueError(
            f"values shape {values.shape} does not match directions {directions.shape[:-1]}"
        )

    if weight is None:
        weight = 4.0 * np.pi / directions.shape[-2]

    sh_basis = eval_sh_basis(directions)  # (..., S, 9)
    return weight * np.einsum('...s,...sk->k...', values, sh_basis)


def reconstruct_from_sh(
    directions: np.ndarray,
    coeffs: np.ndarray
) -> np.ndarray:
    """Reconstruct values from SH coefficients.

    Args:
        directions: Query directions, shape (..., 3)
        coeffs: SH coefficients, shape (9,) or (9, C)

    Returns:
        Reconstructed values, shape (...) or (..., C)
    """
    coeffs = np.asarray(coeffs)
    sh_basis = eval_sh_basis(directions)

    if coeffs.ndim == 1:
        return np.sum(sh_basis * coeffs, axis=-1)
    return np.einsum('...s,sc->...c', sh_basis, coeffs)

