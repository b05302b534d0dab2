"""Metadata generation for precompute runs."""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional


class MetadataWriter:
    """Handles creation and writing of run metadata files."""

    @staticmethod
    def write_run_metadata(
        output_path: Path,
        config: Dict[str, Any],
        light_stats: Dict[str, Any],
        transport_stats: Optional[Dict[str, Any]] = None,
        shading_stats: Optional[Dict[str, Any]] = None,
        scene_info: Optional[Dict[str, Any]] = None,
        timings: Optional[Dict[str, float]] = None,
        outputs: Optional[Dict[str, str]] = None
    ):
        """Write metadata describing one precompute run.

        Args:
            output_path: Path to metadata.json
            config: Configuration dictionary
            light_stats: Output of ``analyze_light``
            transport_stats: Output of ``analyze_transport`` (None without mesh)
            shading_stats: Output of ``analyze_vertex_colors`` (None without mesh)
            scene_info: Scene summary from ``MeshScene.get_info``
            timings: Seconds spent per stage
            outputs: Paths of the files written
        """
        metadata = {
            "version": "1.0",
            "created_at": datetime.now().isoformat(),
            "sh_order": 2,
            "config": config,
            "light": light_stats,
            "transport": transport_stats,
            "shading": shading_stats,
            "scene": scene_info,
            "timings": timings or {},
            "outputs": outputs or {},
        }

        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, "w") as f:
            json.dump(metadata, f, indent=2)

    @staticmethod
    def read_run_metadata(input_path: Path) -> Dict[str, Any]:
        with open(input_path, "r") as f:
            return json.load(f)
