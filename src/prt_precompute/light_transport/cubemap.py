"""Cubemap loading and projection of environment lighting onto SH.

Each face is sampled per texel: the texel centre is mapped to a direction
through the face basis and weighted by the exact solid angle the texel
subtends on the unit sphere. Summed over all six faces the weights cover
4*pi, so a constant environment projects onto its analytic coefficients.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

import imageio.v3 as iio
import numpy as np
from numba import njit

from .spherical_harmonics import N_SH_COEFFS, eval_sh_basis_scalar

# Face file names in load (and summation) order
CUBEMAP_FACE_NAMES = ("negx", "posx", "posy", "negy", "posz", "negz")

# Per-face (right, down, forward) axes, OpenGL cubemap convention.
# A texel at normalised coords (u, v) looks along right * u + down * v + forward.
CUBEMAP_FACE_BASES = {
    "posx": ((0.0, 0.0, -1.0), (0.0, -1.0, 0.0), (1.0, 0.0, 0.0)),
    "negx": ((0.0, 0.0, 1.0), (0.0, -1.0, 0.0), (-1.0, 0.0, 0.0)),
    "posy": ((1.0, 0.0, 0.0), (0.0, 0.0, 1.0), (0.0, 1.0, 0.0)),
    "negy": ((1.0, 0.0, 0.0), (0.0, 0.0, -1.0), (0.0, -1.0, 0.0)),
    "posz": ((1.0, 0.0, 0.0), (0.0, -1.0, 0.0), (0.0, 0.0, 1.0)),
    "negz": ((-1.0, 0.0, 0.0), (0.0, -1.0, 0.0), (0.0, 0.0, -1.0)),
}

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".hdr", ".exr", ".bmp", ".tga")

# stb_image converts LDR data to linear floats with this gamma
LDR_GAMMA = 2.2


@dataclass
class CubemapFace:
    """One decoded cubemap face.

    Attributes:
        name: Face name (``posx``, ``negy``, ...)
        pixels: Linear RGB radiance, shape (height, width, 3), float32
        channels: Channel count of the decoded image before RGB conversion
    """
    name: str
    pixels: np.ndarray
    channels: int = 3

    @property
    def width(self) -> int:
        return self.pixels.shape[1]

    @property
    def height(self) -> int:
        return self.pixels.shape[0]

    @property
    def basis(self) -> np.ndarray:
        """Face basis as rows (right, down, forward), shape (3, 3)."""
        return np.array(CUBEMAP_FACE_BASES[self.name], dtype=np.float64)


def _find_face_file(cubemap_dir: Path, name: str, extension: Optional[str]) -> Path:
    if extension is not None:
        path = cubemap_dir / f"{name}{extension}"
        if not path.exists():
            raise FileNotFoundError(f"Cubemap face not found: {path}")
        return path

    for ext in IMAGE_EXTENSIONS:
        path = cubemap_dir / f"{name}{ext}"
        if path.exists():
            return path
    raise FileNotFoundError(
        f"Cubemap face not found: {cubemap_dir / name}.* "
        f"(tried {', '.join(IMAGE_EXTENSIONS)})"
    )


def image_to_radiance(image: np.ndarray) -> Tuple[np.ndarray, int]:
    """Convert a decoded image to linear float32 RGB.

    Integer images are treated as gamma-encoded LDR data, float images as
    linear HDR radiance.

    Returns:
        Tuple of (pixels, channels) with pixels of shape (H, W, 3) and
        channels the channel count of the input image.
    """
    image = np.asarray(image)
    if image.ndim == 2:
        image = image[:, :, None]
    if image.ndim != 3:
        raise ValueError(f"Expected a 2D image, got array of shape {image.shape}")

    channels = image.shape[2]

    if np.issubdtype(image.dtype, np.integer):
        max_value = float(np.iinfo(image.dtype).max)
        radiance = (image.astype(np.float64) / max_value) ** LDR_GAMMA
    else:
        radiance = image.astype(np.float64)

    if channels == 1:
        radiance = np.repeat(radiance, 3, axis=2)
    elif channels == 2:
        radiance = np.repeat(radiance[:, :, :1], 3, axis=2)
    else:
        radiance = radiance[:, :, :3]

    return np.ascontiguousarray(radiance, dtype=np.float32), channels


def load_cubemap_faces(
    cubemap_dir: Path | str,
    extension: Optional[str] = None
) -> List[CubemapFace]:
    """Load the six faces of a cubemap directory.

    Args:
        cubemap_dir: Directory holding negx, posx, posy, negy, posz, negz images
        extension: File extension including the dot; searched if None

    Returns:
        Faces in ``CUBEMAP_FACE_NAMES`` order

    Raises:
        FileNotFoundError: If the directory or any face is missing
        ValueError: If a face cannot be decoded or faces differ in
            resolution or channel count
    """
    cubemap_dir = Path(cubemap_dir)
    if not cubemap_dir.is_dir():
        raise FileNotFoundError(f"Cubemap directory not found: {cubemap_dir}")

    faces = []
    for name in CUBEMAP_FACE_NAMES:
        path = _find_face_file(cubemap_dir, name, extension)
        try:
            image = iio.imread(path)
        except Exception as e:
            raise ValueError(f"Failed to load cubemap face {path}: {e}")

        pixels, channels = image_to_radiance(image)
        face = CubemapFace(name=name, pixels=pixels, channels=channels)

        if faces:
            first = faces[0]
            if (face.width, face.height, face.channels) != (first.width, first.height, first.channels):
                raise ValueError(
                    f"Mismatched resolution for cubemap face {path}: "
                    f"{face.width}x{face.height}x{face.channels}, expected "
                    f"{first.width}x{first.height}x{first.channels}"
                )
        faces.append(face)

    return faces


@njit(cache=True)
def _pre_area(x: float, y: float) -> float:
    return np.arctan2(x * y, np.sqrt(x * x + y * y + 1.0))


@njit(cache=True)
def texel_solid_angle(x: int, y: int, width: int, height: int) -> float:
    """Solid angle subtended by texel (x, y) of a width x height face."""
    # texel centre in [-1, 1], offset by half a texel on each side
    u = 2.0 * (x + 0.5) / width - 1.0
    v = 2.0 * (y + 0.5) / height - 1.0
    du = 1.0 / width
    dv = 1.0 / height

    x0 = u - du
    y0 = v - dv
    x1 = u + du
    y1 = v + dv
    return _pre_area(x0, y0) - _pre_area(x0, y1) - _pre_area(x1, y0) + _pre_area(x1, y1)


@njit(cache=True)
def texel_direction(x: int, y: int, width: int, height: int, basis: np.ndarray) -> np.ndarray:
    """Unit direction through the centre of texel (x, y)."""
    u = 2.0 * (x + 0.5) / width - 1.0
    v = 2.0 * (y + 0.5) / height - 1.0
    d = basis[0] * u + basis[1] * v + basis[2]
    return d / np.sqrt(d[0] * d[0] + d[1] * d[1] + d[2] * d[2])


@njit(cache=True)
def _accumulate_face_sh(pixels: np.ndarray, basis: np.ndarray, coeffs: np.ndarray) -> None:
    """Add one face's contribution into coeffs (n_sh, 3), row-major texel order."""
    height = pixels.shape[0]
    width = pixels.shape[1]
    for y in range(height):
        for x in range(width):
            d = texel_direction(x, y, width, height, basis)
            weight = texel_solid_angle(x, y, width, height)
            sh = eval_sh_basis_scalar(d[0], d[1], d[2])
            for k in range(coeffs.shape[0]):
                w = sh[k] * weight
                for c in range(3):
                    coeffs[k, c] += w * pixels[y, x, c]


def face_solid_angles(width: int, height: int) -> np.ndarray:
    """Solid angle of every texel of a face, shape (height, width)."""
    angles = np.empty((height, width), dtype=np.float64)
    for y in range(height):
        for x in range(width):
            angles[y, x] = texel_solid_angle(x, y, width, height)
    return angles


def project_cubemap_to_sh(faces: List[CubemapFace]) -> np.ndarray:
    """Project cubemap radiance onto the order-2 SH basis.

    Accumulation runs in float64 in fixed face order and row-major texel
    order, so the result is reproducible bit for bit.

    Args:
        faces: The six cubemap faces

    Returns:
        Light coefficients, shape (9, 3): one RGB triple per SH coefficient

    Raises:
        ValueError: If the face set is incomplete or inconsistent
    """
    if len(faces) != 6:
        raise ValueError(f"A cubemap needs 6 faces, got {len(faces)}")

    shape = faces[0].pixels.shape
    for face in faces:
        if face.pixels.shape != shape:
            raise ValueError(
                f"Mismatched resolution for cubemap face {face.name}: "
                f"{face.pixels.shape} vs {shape}"
            )

    coeffs = np.zeros((N_SH_COEFFS, 3), dtype=np.float64)
    for face in faces:
        pixels = np.ascontiguousarray(face.pixels, dtype=np.float32)
        _accumulate_face_sh(pixels, face.basis, coeffs)

    return coeffs


def precompute_light(cubemap_dir: Path | str, extension: Optional[str] = None) -> np.ndarray:
    """Load a cubemap directory and return its light SH coefficients (9, 3)."""
    faces = load_cubemap_faces(cubemap_dir, extension=extension)
    coeffs = project_cubemap_to_sh(faces)
    # face buffers are not needed once projected
    del faces
    return coeffs
