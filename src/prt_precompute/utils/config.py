"""Configuration management for PRT precomputation."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ..light_transport.transport import TransportPolicy, resolve_transport_policy
from ..scene.mesh_scene import DEFAULT_RAY_EPSILON


@dataclass
class PRTConfig:
    """Configuration for one precompute run.

    Attributes:
        cubemap_dir: Directory holding the six cubemap faces
        mesh_path: Mesh file to compute transport for (light only if None)
        output_dir: Where light.txt / transport.txt go (default: cubemap_dir)
        sample_count: Monte Carlo samples per vertex (default: 100)
        policy: ``unshadowed``, ``shadowed`` or ``interreflection``
        bounces: Indirect bounces, only used by ``interreflection`` (default: 1)
        seed: Seed of the run's random generator (default: 42)
        ray_epsilon: Minimum hit distance for visibility rays
        vertex_batch_size: Vertices sampled together per batch
        albedo: Diffuse albedo of the shaded vertex colours (default: 0.5)
        cubemap_extension: Face file extension, searched if None
        show_progress: Whether to show progress bars
        write_preview: Also write PNG previews of light and transport
    """

    cubemap_dir: Path
    mesh_path: Optional[Path] = None
    output_dir: Optional[Path] = None
    sample_count: int = 100
    policy: str = "unshadowed"
    bounces: int = 1
    seed: Optional[int] = 42
    ray_epsilon: float = DEFAULT_RAY_EPSILON
    vertex_batch_size: int = 256
    albedo: float = 0.5
    cubemap_extension: Optional[str] = None
    show_progress: bool = True
    write_preview: bool = False
    _policy: TransportPolicy = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        """Validate configuration and resolve the transport policy."""
        # Unknown policies fail here, before any asset is touched
        self._policy = resolve_transport_policy(self.policy, self.bounces)
        self.policy = self._policy.name

        if self.sample_count < 1:
            raise ValueError(f"sample_count must be >= 1, got {self.sample_count}")
        if self.vertex_batch_size < 1:
            raise ValueError(f"vertex_batch_size must be >= 1, got {self.vertex_batch_size}")
        if self.ray_epsilon < 0:
            raise ValueError(f"ray_epsilon must be non-negative, got {self.ray_epsilon}")
        if not 0.0 <= self.albedo <= 1.0:
            raise ValueError(f"albedo must be in [0, 1], got {self.albedo}")
        if self.cubemap_extension is not None and not self.cubemap_extension.startswith("."):
            self.cubemap_extension = "." + self.cubemap_extension

        self.cubemap_dir = Path(self.cubemap_dir)
        if self.mesh_path is not None:
            self.mesh_path = Path(self.mesh_path)
        self.output_dir = Path(self.output_dir) if self.output_dir is not None else self.cubemap_dir

    @property
    def transport_policy(self) -> TransportPolicy:
        """Resolved transport strategy."""
        return self._policy

    @property
    def sample_side(self) -> int:
        """Strata per axis of the stratified sphere sampling."""
        return int(self.sample_count ** 0.5)

    @property
    def effective_sample_count(self) -> int:
        """Samples actually drawn per vertex (``sample_side ** 2``)."""
        return self.sample_side ** 2

    def get_light_path(self) -> Path:
        return self.output_dir / "light.txt"

    def get_transport_path(self) -> Path:
        return self.output_dir / "transport.txt"

    def get_metadata_path(self) -> Path:
        """Get path to run-level metadata file."""
        return self.output_dir / "metadata.json"

    def to_dict(self) -> dict:
        return {
            "cubemap_dir": str(self.cubemap_dir),
            "mesh_path": str(self.mesh_path) if self.mesh_path is not None else None,
            "output_dir": str(self.output_dir),
            "sample_count": self.sample_count,
            "effective_sample_count": self.effective_sample_count,
            "policy": self.policy,
            "bounces": self.bounces if self.policy == "interreflection" else 0,
            "seed": self.seed,
            "ray_epsilon": self.ray_epsilon,
            "vertex_batch_size": self.vertex_batch_size,
            "albedo": self.albedo,
        }
