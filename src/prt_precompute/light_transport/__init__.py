"""Precomputed radiance transfer on spherical harmonics.

This module projects environment lighting and per-vertex transport onto an
order-2 SH basis and reconstructs shading from the two coefficient sets.

Main Components:
    project_cubemap_to_sh: Cubemap radiance -> light coefficients (9, 3)
    precompute_transport: Mesh vertices -> transport coefficients (9, V)
    InterreflectionAccumulator: Adds indirect bounces to transport
    RuntimeEvaluator: Light . transport shading at ray hits

Example:
    >>> import numpy as np
    >>> from prt_precompute.scene import MeshScene
    >>> from prt_precompute.light_transport import (
    ...     precompute_light, precompute_transport, resolve_transport_policy,
    ...     RuntimeEvaluator,
    ... )
    >>>
    >>> light = precompute_light("cubemap/Indoor")
    >>> scene = MeshScene.load("bunny.obj")
    >>> policy = resolve_transport_policy("shadowed")
    >>> transport = precompute_transport(
    ...     scene, policy, sample_count=100, rng=np.random.default_rng(42)
    ... )
    >>> colors = RuntimeEvaluator(scene, light, transport).vertex_colors()
"""

from .spherical_harmonics import (
    N_SH_COEFFS,
    SH_ORDER,
    eval_sh_basis,
    eval_sh_basis_scalar,
    get_n_sh_coeffs,
    get_sh_order,
    project_to_sh,
    reconstruct_from_sh,
    sample_stratified_sphere,
    sh_index,
    spherical_to_cartesian,
)
from .cubemap import (
    CUBEMAP_FACE_NAMES,
    CubemapFace,
    face_solid_angles,
    load_cubemap_faces,
    precompute_light,
    project_cubemap_to_sh,
    texel_solid_angle,
)
from .transport import (
    InterreflectionTransport,
    ShadowedTransport,
    UnshadowedTransport,
    precompute_transport,
    project_transport,
    resolve_transport_policy,
)
from .interreflection import InterreflectionAccumulator
from .runtime import RuntimeEvaluator
from .coefficient_io import (
    analyze_light,
    analyze_transport,
    analyze_vertex_colors,
    load_light_coefficients,
    load_transport_coefficients,
    read_transport_file,
    save_light_coefficients,
    save_transport_coefficients,
    visualize_light,
    visualize_transport,
    visualize_vertex_colors,
)

__all__ = [
    # Spherical harmonics
    "N_SH_COEFFS",
    "SH_ORDER",
    "eval_sh_basis",
    "eval_sh_basis_scalar",
    "get_n_sh_coeffs",
    "get_sh_order",
    "project_to_sh",
    "reconstruct_from_sh",
    "sample_stratified_sphere",
    "sh_index",
    "spherical_to_cartesian",

    # Cubemap
    "CUBEMAP_FACE_NAMES",
    "CubemapFace",
    "face_solid_angles",
    "load_cubemap_faces",
    "precompute_light",
    "project_cubemap_to_sh",
    "texel_solid_angle",

    # Transport
    "InterreflectionTransport",
    "ShadowedTransport",
    "UnshadowedTransport",
    "precompute_transport",
    "project_transport",
    "resolve_transport_policy",
    "InterreflectionAccumulator",
    "RuntimeEvaluator",

    # Coefficient I/O
    "analyze_light",
    "analyze_transport",
    "analyze_vertex_colors",
    "load_light_coefficients",
    "load_transport_coefficients",
    "read_transport_file",
    "save_light_coefficients",
    "save_transport_coefficients",
    "visualize_light",
    "visualize_transport",
    "visualize_vertex_colors",
]
