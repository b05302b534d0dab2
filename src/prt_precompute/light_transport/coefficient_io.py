"""Text persistence, analysis and visualisation of SH coefficients.

light.txt holds one ``r g b`` line per SH coefficient. transport.txt starts
with the vertex count, followed by three lines per triangle (one per
corner) of nine coefficients each.
"""

import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import numpy as np

from .spherical_harmonics import (
    N_SH_COEFFS,
    get_n_sh_coeffs,
    get_sh_order,
    reconstruct_from_sh,
    sh_index,
    spherical_to_cartesian,
)

FLOAT_FORMAT = "%.9g"


def _current_umask() -> int:
    umask = os.umask(0)
    os.umask(umask)
    return umask


def _atomic_write(path: Path, text: str) -> None:
    """Write text to a temporary sibling file and rename it over path.

    The final file gets the same permissions as a plain ``open(path, "w")``.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(text)
        # mkstemp creates the file 0600
        os.chmod(tmp_name, 0o666 & ~_current_umask())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.remove(tmp_name)
        raise


def _format_rows(rows: np.ndarray) -> str:
    return "".join(" ".join(FLOAT_FORMAT % v for v in row) + "\n" for row in rows)


def save_light_coefficients(path: Path, light_coeffs: np.ndarray) -> None:
    """Save light coefficients (9, 3) as one ``r g b`` line per coefficient."""
    light_coeffs = np.asarray(light_coeffs, dtype=np.float64)
    if light_coeffs.shape != (N_SH_COEFFS, 3):
        raise ValueError(f"light_coeffs must have shape ({N_SH_COEFFS}, 3), got {light_coeffs.shape}")
    _atomic_write(path, _format_rows(light_coeffs))


def load_light_coefficients(path: Path) -> np.ndarray:
    """Load light coefficients written by ``save_light_coefficients``.

    Raises:
        ValueError: If the file does not hold 9 lines of 3 floats
    """
    path = Path(path)
    rows = []
    with open(path, "r") as f:
        for line_no, line in enumerate(f, start=1):
            if not line.strip():
                continue
            try:
                values = [float(v) for v in line.split()]
            except ValueError as e:
                raise ValueError(f"{path}:{line_no}: {e}")
            if len(values) != 3:
                raise ValueError(f"{path}:{line_no}: expected 3 values, got {len(values)}")
            rows.append(values)

    if len(rows) != N_SH_COEFFS:
        raise ValueError(f"{path}: expected {N_SH_COEFFS} coefficient lines, got {len(rows)}")
    return np.array(rows, dtype=np.float64)


def save_transport_coefficients(path: Path, transport: np.ndarray, faces: np.ndarray) -> None:
    """Save transport (9, V) in per-triangle layout.

    Args:
        path: Output file path
        transport: Transport coefficients, shape (9, n_vertices)
        faces: Triangle vertex indices, shape (M, 3)
    """
    transport = np.asarray(transport, dtype=np.float64)
    faces = np.asarray(faces, dtype=np.int64)
    if transport.ndim != 2 or transport.shape[0] != N_SH_COEFFS:
        raise ValueError(f"transport must have shape ({N_SH_COEFFS}, V), got {transport.shape}")

    corner_rows = transport[:, faces.reshape(-1)].T  # (3M, 9)
    _atomic_write(path, f"{transport.shape[1]}\n" + _format_rows(corner_rows))


def read_transport_file(path: Path) -> Tuple[int, np.ndarray]:
    """Read a transport file without mesh information.

    Returns:
        Tuple of (vertex_count, corner_rows) with corner_rows of shape
        (3 * n_triangles, 9) in file order
    """
    path = Path(path)
    with open(path, "r") as f:
        lines = [line for line in f if line.strip()]

    if not lines:
        raise ValueError(f"{path}: empty transport file")
    try:
        vertex_count = int(lines[0].strip())
    except ValueError:
        raise ValueError(f"{path}: first line must be the vertex count, got {lines[0].strip()!r}")

    rows = []
    for line_no, line in enumerate(lines[1:], start=2):
        try:
            values = [float(v) for v in line.split()]
        except ValueError as e:
            raise ValueError(f"{path}:{line_no}: {e}")
        if len(values) != N_SH_COEFFS:
            raise ValueError(f"{path}:{line_no}: expected {N_SH_COEFFS} values, got {len(values)}")
        rows.append(values)

    if len(rows) % 3 != 0:
        raise ValueError(f"{path}: {len(rows)} coefficient lines is not a whole number of triangles")

    return vertex_count, np.array(rows, dtype=np.float64).reshape(-1, N_SH_COEFFS)


def load_transport_coefficients(path: Path, faces: np.ndarray) -> np.ndarray:
    """Rebuild the (9, V) transport matrix from a file and the mesh faces.

    Vertices referenced by no triangle get zero coefficients.
    """
    vertex_count, corner_rows = read_transport_file(path)
    faces = np.asarray(faces, dtype=np.int64)
    if len(corner_rows) != 3 * len(faces):
        raise ValueError(
            f"{path}: {len(corner_rows) // 3} triangles in file, mesh has {len(faces)}"
        )
    if faces.size and faces.max() >= vertex_count:
        raise ValueError(f"{path}: faces reference vertices beyond vertex count {vertex_count}")

    transport = np.zeros((N_SH_COEFFS, vertex_count), dtype=np.float64)
    transport[:, faces.reshape(-1)] = corner_rows.T
    return transport


def analyze_transport(transport: np.ndarray) -> Dict[str, Any]:
    """Summary statistics of a transport matrix."""
    transport = np.asarray(transport)
    dc = transport[0]
    return {
        'shape': list(transport.shape),
        'min': float(transport.min()) if transport.size else 0.0,
        'max': float(transport.max()) if transport.size else 0.0,
        'mean': float(transport.mean()) if transport.size else 0.0,
        'dc_min': float(dc.min()) if dc.size else 0.0,
        'dc_max': float(dc.max()) if dc.size else 0.0,
        'dc_mean': float(dc.mean()) if dc.size else 0.0,
        'zero_vertices': int(np.sum(np.all(transport == 0, axis=0))),
    }


def analyze_light(light_coeffs: np.ndarray) -> Dict[str, Any]:
    """Summary of light coefficients, including mean radiance per channel."""
    light_coeffs = np.asarray(light_coeffs)
    # Y_0^0 is constant, so c_0 / sqrt(4 pi) is the average radiance
    mean_radiance = light_coeffs[0] / np.sqrt(4.0 * np.pi)
    return {
        'coefficients': light_coeffs.tolist(),
        'mean_radiance': mean_radiance.tolist(),
        'band_energy': [
            float(np.sum(light_coeffs[sh_index(l, -l):get_n_sh_coeffs(l)] ** 2))
            for l in range(get_sh_order(len(light_coeffs)) + 1)
        ],
    }


def analyze_vertex_colors(vertex_colors: np.ndarray, albedo: float) -> Dict[str, Any]:
    """Per-channel statistics of shaded vertex colours."""
    vertex_colors = np.asarray(vertex_colors)
    empty = vertex_colors.size == 0
    return {
        'albedo': float(albedo),
        'mean_color': [0.0] * 3 if empty else vertex_colors.mean(axis=0).tolist(),
        'min_color': [0.0] * 3 if empty else vertex_colors.min(axis=0).tolist(),
        'max_color': [0.0] * 3 if empty else vertex_colors.max(axis=0).tolist(),
    }


def render_light_panorama(light_coeffs: np.ndarray, height: int = 64) -> np.ndarray:
    """Reconstruct the light SH on an equirectangular grid, shape (H, 2H, 3)."""
    width = 2 * height
    theta = (np.arange(height) + 0.5) / height * np.pi
    phi = (np.arange(width) + 0.5) / width * 2.0 * np.pi
    phi_grid, theta_grid = np.meshgrid(phi, theta)
    directions = spherical_to_cartesian(phi_grid, theta_grid)
    return reconstruct_from_sh(directions, light_coeffs)


def visualize_light(
    light_coeffs: np.ndarray,
    output_path: Optional[Path] = None,
    title: str = "SH Environment Light",
    height: int = 128
) -> None:
    """Plot the SH-reconstructed environment as a panorama.

    Args:
        light_coeffs: Light coefficients, shape (9, 3)
        output_path: Path to save image (if None, displays interactively)
        title: Plot title
        height: Panorama height in pixels
    """
    import matplotlib
    if output_path:
        matplotlib.use("Agg")
    import matplotlib.pyplot as plt

    panorama = render_light_panorama(light_coeffs, height=height)
    peak = panorama.max()
    image = np.clip(panorama / peak, 0.0, 1.0) if peak > 0 else np.zeros_like(panorama)

    fig, ax = plt.subplots(figsize=(10, 5))
    ax.imshow(image, extent=(0, 360, 180, 0), aspect='auto')
    ax.set_xlabel("phi (degrees)")
    ax.set_ylabel("theta (degrees)")
    ax.set_title(f"{title} (peak {peak:.3g})")

    if output_path:
        plt.savefig(output_path, dpi=150, bbox_inches='tight')
        plt.close(fig)
    else:
        plt.show()


def visualize_transport(
    transport: np.ndarray,
    output_path: Optional[Path] = None,
    title: str = "Transport Coefficients",
    log_scale: bool = False
) -> None:
    """Visualize the (9, V) transport matrix as an image.

    Args:
        transport: Transport matrix to visualize
        output_path: Path to save image (if None, displays interactively)
        title: Plot title
        log_scale: Use log scale for better visibility
    """
    import matplotlib
    if output_path:
        matplotlib.use("Agg")
    import matplotlib.pyplot as plt

    data = np.asarray(transport)
    if log_scale:
        data = np.log10(np.abs(data) + 1e-10)
        label = "log10(|T|)"
    else:
        label = "T"

    fig, ax = plt.subplots(figsize=(12, 4))
    im = ax.imshow(data, cmap='viridis', aspect='auto', interpolation='nearest')
    plt.colorbar(im, ax=ax, label=label)

    ax.set_xlabel("Vertex")
    ax.set_ylabel("SH coefficient")
    ax.set_title(title)

    if output_path:
        plt.savefig(output_path, dpi=150, bbox_inches='tight')
        plt.close(fig)
    else:
        plt.show()


def visualize_vertex_colors(
    vertices: np.ndarray,
    vertex_colors: np.ndarray,
    output_path: Optional[Path] = None,
    title: str = "Shaded vertices"
) -> None:
    """Scatter the mesh vertices in 3D, coloured by their shaded RGB.

    Colours are divided by their maximum so the brightest vertex is white.
    """
    import matplotlib
    if output_path:
        matplotlib.use("Agg")
    import matplotlib.pyplot as plt

    vertices = np.asarray(vertices)
    colors = np.clip(np.asarray(vertex_colors, dtype=np.float64), 0.0, None)
    peak = colors.max() if colors.size else 0.0
    colors = colors / peak if peak > 0 else np.zeros_like(colors)

    fig = plt.figure(figsize=(8, 8))
    ax = fig.add_subplot(projection='3d')
    ax.scatter(vertices[:, 0], vertices[:, 1], vertices[:, 2], c=colors, s=4)
    ax.set_xlabel("x")
    ax.set_ylabel("y")
    ax.set_zlabel("z")
    ax.set_title(f"{title} (peak {peak:.3g})")

    if output_path:
        plt.savefig(output_path, dpi=150, bbox_inches='tight')
        plt.close(fig)
    else:
        plt.show()
