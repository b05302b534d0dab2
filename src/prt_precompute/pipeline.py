"""Main pipeline for precomputing radiance transfer coefficients."""

import sys
import time
from pathlib import Path
from typing import Dict, Optional

import numpy as np

from .light_transport.cubemap import load_cubemap_faces, project_cubemap_to_sh
from .light_transport.transport import precompute_transport
from .light_transport.coefficient_io import (
    analyze_light,
    analyze_transport,
    analyze_vertex_colors,
    save_light_coefficients,
    save_transport_coefficients,
    visualize_light,
    visualize_transport,
    visualize_vertex_colors,
)
from .light_transport.runtime import RuntimeEvaluator
from .scene.mesh_scene import MeshScene
from .utils.config import PRTConfig
from .utils.metadata import MetadataWriter


class PRTPrecomputer:
    """Main pipeline for precomputing PRT light and transport files.

    This class orchestrates the entire process:
    1. Projection of the cubemap environment onto SH
    2. Per-vertex transport projection under the configured policy
    3. Interreflection bounces (``interreflection`` policy only)
    4. Albedo-scaled vertex shading for previews and metadata
    5. Writing light.txt, transport.txt and metadata.json

    Nothing is written until every stage has succeeded.
    """

    def __init__(self, config: PRTConfig):
        """Initialize the precomputer.

        Args:
            config: Run configuration (policy already validated)
        """
        self.config = config
        self.rng = np.random.default_rng(config.seed)

        self.light_coeffs: Optional[np.ndarray] = None
        self.transport: Optional[np.ndarray] = None
        self.scene: Optional[MeshScene] = None
        self.vertex_colors: Optional[np.ndarray] = None
        self.timings: Dict[str, float] = {}

    def compute_light(self) -> np.ndarray:
        """Load the cubemap and project it onto SH, shape (9, 3)."""
        start = time.time()
        faces = load_cubemap_faces(self.config.cubemap_dir, extension=self.config.cubemap_extension)
        self.light_coeffs = project_cubemap_to_sh(faces)
        # face buffers are consumed by the projection
        del faces
        self.timings["light"] = time.time() - start
        return self.light_coeffs

    def load_scene(self) -> MeshScene:
        if self.config.mesh_path is None:
            raise ValueError("No mesh_path configured for transport precomputation")
        self.scene = MeshScene.load(self.config.mesh_path, ray_epsilon=self.config.ray_epsilon)
        return self.scene

    def compute_transport(self) -> np.ndarray:
        """Project transport for every vertex of the scene, shape (9, V)."""
        if self.scene is None:
            self.load_scene()

        policy = self.config.transport_policy
        if policy.name == "interreflection":
            print("Using interreflection transport "
                  f"({self.config.bounces} bounce{'s' if self.config.bounces != 1 else ''})")

        start = time.time()
        self.transport = precompute_transport(
            self.scene,
            policy,
            sample_count=self.config.sample_count,
            rng=self.rng,
            vertex_batch_size=self.config.vertex_batch_size,
            show_progress=self.config.show_progress
        )
        self.timings["transport"] = time.time() - start
        return self.transport

    def shade_vertices(self) -> np.ndarray:
        """Lambertian vertex colours under the configured albedo, shape (V, 3)."""
        if self.transport is None:
            self.compute_transport()
        evaluator = RuntimeEvaluator(
            self.scene, self.light_coeffs, self.transport, albedo=self.config.albedo
        )
        self.vertex_colors = evaluator.vertex_colors()
        return self.vertex_colors

    def write_previews(self) -> Dict[str, Path]:
        """Render the PNG previews into the output directory."""
        config = self.config
        config.output_dir.mkdir(parents=True, exist_ok=True)
        previews = {}

        light_preview = config.output_dir / "light_preview.png"
        visualize_light(self.light_coeffs, output_path=light_preview)
        previews["light_preview"] = light_preview

        if self.transport is not None:
            transport_preview = config.output_dir / "transport_preview.png"
            visualize_transport(self.transport, output_path=transport_preview,
                                title=f"{config.policy} transport")
            previews["transport_preview"] = transport_preview

            shading_preview = config.output_dir / "shading_preview.png"
            visualize_vertex_colors(self.scene.vertices, self.vertex_colors,
                                    output_path=shading_preview,
                                    title=f"Shaded vertices (albedo {config.albedo:g})")
            previews["shading_preview"] = shading_preview

        return previews

    def run(self) -> Dict[str, Path]:
        """Compute everything, then write the output files.

        Previews are rendered before the coefficient files, so a plotting
        failure leaves no light.txt / transport.txt behind.

        Returns:
            Mapping of output kind to path written

        Raises:
            FileNotFoundError: Missing cubemap face or mesh
            ValueError: Invalid assets
        """
        config = self.config

        self.compute_light()
        if config.mesh_path is not None:
            self.load_scene()
            self.compute_transport()
            self.shade_vertices()

        outputs = {}
        if config.write_preview:
            outputs.update(self.write_previews())

        light_path = config.get_light_path()
        save_light_coefficients(light_path, self.light_coeffs)
        outputs["light"] = light_path
        print(f"Computed light sh coeffs from: {config.cubemap_dir} to: {light_path}")

        if self.transport is not None:
            transport_path = config.get_transport_path()
            save_transport_coefficients(transport_path, self.transport, self.scene.faces)
            outputs["transport"] = transport_path
            print(f"Computed SH coeffs to: {transport_path}")

        metadata_path = config.get_metadata_path()
        MetadataWriter.write_run_metadata(
            output_path=metadata_path,
            config=config.to_dict(),
            light_stats=analyze_light(self.light_coeffs),
            transport_stats=analyze_transport(self.transport) if self.transport is not None else None,
            shading_stats=(analyze_vertex_colors(self.vertex_colors, config.albedo)
                           if self.vertex_colors is not None else None),
            scene_info=self.scene.get_info() if self.scene is not None else None,
            timings=self.timings,
            outputs={k: str(v) for k, v in outputs.items()}
        )
        outputs["metadata"] = metadata_path

        return outputs


def main(argv=None):
    """Command line entry point."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Precompute SH light and transport coefficients for PRT rendering"
    )
    parser.add_argument(
        "cubemap_dir",
        type=Path,
        help="Directory with negx, posx, posy, negy, posz, negz images"
    )
    parser.add_argument(
        "--mesh",
        type=Path,
        default=None,
        help="Mesh file to compute transport for (light only if omitted)"
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=None,
        help="Output directory (default: the cubemap directory)"
    )
    parser.add_argument(
        "--type",
        dest="policy",
        default="unshadowed",
        help="Transport type: unshadowed, shadowed or interreflection"
    )
    parser.add_argument(
        "--samples",
        type=int,
        default=100,
        help="Monte Carlo samples per vertex"
    )
    parser.add_argument(
        "--bounces",
        type=int,
        default=1,
        help="Interreflection bounces"
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=42,
        help="Random seed"
    )
    parser.add_argument(
        "--extension",
        default=None,
        help="Cubemap face file extension (searched if omitted)"
    )
    parser.add_argument(
        "--albedo",
        type=float,
        default=0.5,
        help="Diffuse albedo for the shaded vertex preview and metadata"
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=256,
        help="Vertices sampled per batch"
    )
    parser.add_argument(
        "--preview",
        action="store_true",
        help="Also write PNG previews of the light and transport"
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Disable progress bars"
    )

    args = parser.parse_args(argv)

    try:
        config = PRTConfig(
            cubemap_dir=args.cubemap_dir,
            mesh_path=args.mesh,
            output_dir=args.output_dir,
            sample_count=args.samples,
            policy=args.policy,
            bounces=args.bounces,
            seed=args.seed,
            vertex_batch_size=args.batch_size,
            albedo=args.albedo,
            cubemap_extension=args.extension,
            show_progress=not args.quiet,
            write_preview=args.preview
        )
        outputs = PRTPrecomputer(config).run()
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print("\nPrecomputation complete!")
    for kind, path in outputs.items():
        print(f"  {kind}: {path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
