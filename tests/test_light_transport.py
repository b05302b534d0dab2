"""Tests for light transport module."""

import numpy as np
import pytest

from prt_precompute.light_transport import (
    CUBEMAP_FACE_NAMES,
    CubemapFace,
    InterreflectionAccumulator,
    InterreflectionTransport,
    RuntimeEvaluator,
    ShadowedTransport,
    UnshadowedTransport,
    eval_sh_basis,
    eval_sh_basis_scalar,
    face_solid_angles,
    get_n_sh_coeffs,
    get_sh_order,
    precompute_transport,
    project_cubemap_to_sh,
    project_to_sh,
    project_transport,
    reconstruct_from_sh,
    resolve_transport_policy,
    sample_stratified_sphere,
    sh_index,
    spherical_to_cartesian,
    texel_solid_angle,
)
from prt_precompute.scene import MeshScene

Y00 = 0.5 / np.sqrt(np.pi)


def make_quad(y=0.0, half=1.0, normal=(0.0, 1.0, 0.0)):
    vertices = np.array([
        [-half, y, -half],
        [half, y, -half],
        [half, y, half],
        [-half, y, half],
    ])
    faces = np.array([[0, 2, 1], [0, 3, 2]])
    normals = np.tile(np.asarray(normal, dtype=np.float64), (4, 1))
    return vertices, faces, normals


def make_uniform_faces(size=16, radiance=(1.0, 1.0, 1.0)):
    pixels = np.ones((size, size, 3), dtype=np.float32) * np.asarray(radiance, dtype=np.float32)
    return [CubemapFace(name=name, pixels=pixels.copy()) for name in CUBEMAP_FACE_NAMES]


@pytest.fixture
def quad_scene():
    """Flat quad in the y=0 plane, normal +Y."""
    vertices, faces, normals = make_quad()
    return MeshScene(vertices, faces, normals)


@pytest.fixture
def occluded_scene():
    """Quad at y=0 facing up under a larger quad at y=1 facing down."""
    v0, f0, n0 = make_quad(y=0.0, half=1.0, normal=(0.0, 1.0, 0.0))
    v1, f1, n1 = make_quad(y=1.0, half=3.0, normal=(0.0, -1.0, 0.0))
    vertices = np.vstack([v0, v1])
    faces = np.vstack([f0, f1 + 4])
    normals = np.vstack([n0, n1])
    return MeshScene(vertices, faces, normals)


@pytest.fixture
def enclosed_scene():
    """Closed cube with an extra vertex at its centre."""
    corners = np.array([
        [-1, -1, -1], [1, -1, -1], [1, 1, -1], [-1, 1, -1],
        [-1, -1, 1], [1, -1, 1], [1, 1, 1], [-1, 1, 1],
    ], dtype=np.float64)
    faces = np.array([
        [0, 2, 1], [0, 3, 2],  # -z
        [4, 5, 6], [4, 6, 7],  # +z
        [0, 1, 5], [0, 5, 4],  # -y
        [3, 7, 6], [3, 6, 2],  # +y
        [0, 4, 7], [0, 7, 3],  # -x
        [1, 2, 6], [1, 6, 5],  # +x
    ])
    vertices = np.vstack([corners, [[0.0, 0.0, 0.0]]])
    normals = np.vstack([corners / np.sqrt(3.0), [[0.0, 1.0, 0.0]]])
    return MeshScene(vertices, faces, normals)


class TestSphericalHarmonics:
    """Tests for spherical harmonics functions."""

    def test_sh_coefficients_count(self):
        """Test correct number of SH coefficients."""
        assert get_n_sh_coeffs(0) == 1
        assert get_n_sh_coeffs(1) == 4
        assert get_n_sh_coeffs(2) == 9

    def test_sh_order_from_coeffs(self):
        """Test extracting order from coefficient count."""
        assert get_sh_order(1) == 0
        assert get_sh_order(4) == 1
        assert get_sh_order(9) == 2

    def test_sh_order_invalid(self):
        """Test invalid coefficient counts."""
        with pytest.raises(ValueError):
            get_sh_order(5)

    def test_sh_index(self):
        """Test flat index of (l, m) pairs."""
        indices = [sh_index(l, m) for l in range(3) for m in range(-l, l + 1)]
        assert indices == list(range(9))
        with pytest.raises(ValueError):
            sh_index(1, 2)

    def test_eval_sh_single_direction(self):
        """Test SH evaluation for a single direction."""
        coeffs = eval_sh_basis(np.array([0, 0, 1]))

        assert coeffs.shape == (9,)
        assert np.isclose(coeffs[0], 0.282095, rtol=1e-4)
        assert np.isclose(coeffs[2], 0.488603, rtol=1e-4)
        assert np.isclose(coeffs[6], 0.630783, rtol=1e-4)

    def test_eval_sh_single_pair(self):
        """Test reading one basis function by band and order."""
        basis = eval_sh_basis(np.array([0.6, 0.0, 0.8]))
        assert np.isclose(basis[sh_index(1, 1)], 0.488603 * 0.6, rtol=1e-4)
        assert np.isclose(basis[sh_index(0, 0)], Y00)

    def test_scalar_kernel_matches_numpy(self):
        """Test the Numba basis agrees with the vectorised one."""
        directions, _ = sample_stratified_sphere(20, np.random.default_rng(3))
        expected = eval_sh_basis(directions)
        for d, row in zip(directions, expected):
            np.testing.assert_allclose(eval_sh_basis_scalar(d[0], d[1], d[2]), row, atol=1e-12)

    def test_spherical_to_cartesian(self):
        """Test angle conversion conventions."""
        np.testing.assert_allclose(spherical_to_cartesian(0.0, 0.0), [0, 0, 1], atol=1e-12)
        np.testing.assert_allclose(spherical_to_cartesian(0.0, np.pi / 2), [1, 0, 0], atol=1e-12)
        np.testing.assert_allclose(spherical_to_cartesian(np.pi / 2, np.pi / 2), [0, 1, 0], atol=1e-12)

    def test_stratified_sampling(self):
        """Test stratified sampling shape, weight and unit length."""
        rng = np.random.default_rng(0)
        directions, weight = sample_stratified_sphere(10, rng, batch_shape=(4,))

        assert directions.shape == (4, 9, 3)
        assert np.isclose(weight, 4 * np.pi / 9)
        np.testing.assert_allclose(np.linalg.norm(directions, axis=-1), 1.0)

    def test_stratified_sampling_reproducible(self):
        """Test that equal seeds give equal samples."""
        a, _ = sample_stratified_sphere(100, np.random.default_rng(7))
        b, _ = sample_stratified_sphere(100, np.random.default_rng(7))
        c, _ = sample_stratified_sphere(100, np.random.default_rng(8))
        assert np.array_equal(a, b)
        assert not np.array_equal(a, c)

    @pytest.mark.slow
    def test_sh_orthonormality(self):
        """Test that SH basis functions are orthonormal."""
        directions, weight = sample_stratified_sphere(40000, np.random.default_rng(42))
        basis = eval_sh_basis(directions)
        inner_products = weight * (basis.T @ basis)
        np.testing.assert_allclose(inner_products, np.eye(9), atol=0.02)

    def test_sh_projection_reconstruction(self):
        """Test that projection and reconstruction are inverses."""
        rng = np.random.default_rng(42)
        directions, weight = sample_stratified_sphere(10000, rng)
        values = 1.0 + 0.5 * directions[:, 2]

        coeffs = project_to_sh(directions, values, weight=weight)
        assert coeffs.shape == (9,)

        test_dirs, _ = sample_stratified_sphere(1000, np.random.default_rng(123))
        reconstructed = reconstruct_from_sh(test_dirs, coeffs)
        true_values = 1.0 + 0.5 * test_dirs[:, 2]

        np.testing.assert_allclose(reconstructed, true_values, atol=0.02)

    def test_batched_projection(self):
        """Test a batch of sample sets projects to one column per entry."""
        directions, weight = sample_stratified_sphere(64, np.random.default_rng(1), batch_shape=(3,))
        values = np.stack([np.ones(64), directions[1, :, 2], np.zeros(64)])

        coeffs = project_to_sh(directions, values, weight=weight)

        assert coeffs.shape == (9, 3)
        for b in range(3):
            np.testing.assert_allclose(
                coeffs[:, b], project_to_sh(directions[b], values[b], weight=weight)
            )
        np.testing.assert_allclose(coeffs[0, 0], 4 * np.pi * Y00)

    def test_projection_shape_mismatch(self):
        directions, _ = sample_stratified_sphere(16, np.random.default_rng(0))
        with pytest.raises(ValueError):
            project_to_sh(directions, np.ones(15))


class TestCubemapProjection:
    """Tests for cubemap solid angles and light projection."""

    def test_texel_solid_angles_cover_sphere(self):
        """Test that six faces of texel solid angles add up to 4*pi."""
        for size in (1, 4, 16):
            total = 6 * face_solid_angles(size, size).sum()
            assert np.isclose(total, 4 * np.pi, rtol=1e-9)

    def test_single_texel_face(self):
        """Test a 1x1 face covers a sixth of the sphere."""
        assert np.isclose(texel_solid_angle(0, 0, 1, 1), 4 * np.pi / 6)

    def test_centre_texels_largest(self):
        """Test that texels shrink towards the face corners."""
        angles = face_solid_angles(8, 8)
        assert angles[3, 3] > angles[0, 0]
        np.testing.assert_allclose(angles, angles.T)

    def test_light_coefficient_count(self):
        """Test light coefficients have one RGB triple per SH coefficient."""
        coeffs = project_cubemap_to_sh(make_uniform_faces(size=4))
        assert coeffs.shape == (9, 3)

    def test_uniform_environment_energy(self):
        """Test constant radiance projects onto L * 4pi / sqrt(4pi)."""
        radiance = np.array([1.0, 0.5, 2.0])
        coeffs = project_cubemap_to_sh(make_uniform_faces(size=16, radiance=radiance))

        expected_dc = radiance * 4 * np.pi / np.sqrt(4 * np.pi)
        np.testing.assert_allclose(coeffs[0], expected_dc, rtol=1e-5)
        np.testing.assert_allclose(coeffs[1:], 0.0, atol=2e-2)

    def test_energy_converges_with_resolution(self):
        """Test higher bands vanish as texel resolution grows."""
        coarse = project_cubemap_to_sh(make_uniform_faces(size=2))
        fine = project_cubemap_to_sh(make_uniform_faces(size=32))
        assert np.abs(fine[1:]).max() <= np.abs(coarse[1:]).max() + 1e-12

    def test_directional_face(self):
        """Test that light only on +Y gives a positive Y_1^-1 coefficient."""
        faces = make_uniform_faces(size=8, radiance=(0.0, 0.0, 0.0))
        for face in faces:
            if face.name == "posy":
                face.pixels[:] = 1.0
        coeffs = project_cubemap_to_sh(faces)

        assert np.all(coeffs[sh_index(1, -1)] > 0)
        np.testing.assert_allclose(coeffs[sh_index(1, 0)], 0.0, atol=1e-9)
        np.testing.assert_allclose(coeffs[sh_index(1, 1)], 0.0, atol=1e-9)

    def test_projection_is_deterministic(self):
        """Test repeated projection is bit-identical."""
        rng = np.random.default_rng(5)
        faces = [CubemapFace(name=n, pixels=rng.random((8, 8, 3)).astype(np.float32))
                 for n in CUBEMAP_FACE_NAMES]
        assert np.array_equal(project_cubemap_to_sh(faces), project_cubemap_to_sh(faces))

    def test_mismatched_faces(self):
        """Test faces of different sizes are rejected."""
        faces = make_uniform_faces(size=8)
        faces[3] = CubemapFace(name=faces[3].name, pixels=np.ones((4, 4, 3), dtype=np.float32))
        with pytest.raises(ValueError):
            project_cubemap_to_sh(faces)

    def test_wrong_face_count(self):
        """Test an incomplete face set is rejected."""
        with pytest.raises(ValueError):
            project_cubemap_to_sh(make_uniform_faces(size=4)[:5])


class TestTransportPolicies:
    """Tests for policy resolution."""

    def test_resolve_names(self):
        """Test every policy name resolves to its strategy."""
        assert isinstance(resolve_transport_policy("unshadowed"), UnshadowedTransport)
        assert isinstance(resolve_transport_policy("shadowed"), ShadowedTransport)
        policy = resolve_transport_policy("interreflection", bounces=3)
        assert isinstance(policy, InterreflectionTransport)
        assert policy.bounces == 3

    def test_unknown_policy(self):
        """Test unknown names are a configuration error."""
        with pytest.raises(ValueError, match="Unsupported transport type"):
            resolve_transport_policy("pathtraced")

    def test_invalid_bounces(self):
        """Test interreflection needs at least one bounce."""
        with pytest.raises(ValueError):
            resolve_transport_policy("interreflection", bounces=0)


class TestTransportProjection:
    """Tests for per-vertex transport projection."""

    def test_transport_shape(self, quad_scene):
        """Test transport has one 9-vector column per vertex."""
        transport = project_transport(
            quad_scene, UnshadowedTransport(), 100, np.random.default_rng(0)
        )
        assert transport.shape == (9, quad_scene.vertex_count)

    @pytest.mark.slow
    def test_unshadowed_hemisphere_integral(self, quad_scene):
        """Test zeroth coefficient matches the cosine integral pi * Y00."""
        transport = project_transport(
            quad_scene, UnshadowedTransport(), 2500, np.random.default_rng(1)
        )
        np.testing.assert_allclose(transport[0], np.pi * Y00, rtol=0.03)

    @pytest.mark.slow
    def test_unshadowed_ignores_geometry(self, occluded_scene):
        """Test unshadowed transport does not see the occluder."""
        transport = project_transport(
            occluded_scene, UnshadowedTransport(), 2500, np.random.default_rng(1)
        )
        np.testing.assert_allclose(transport[0, :4], np.pi * Y00, rtol=0.03)

    def test_shadowed_equals_unshadowed_in_open_scene(self, quad_scene):
        """Test shadowing changes nothing when no ray can hit."""
        unshadowed = project_transport(
            quad_scene, UnshadowedTransport(), 400, np.random.default_rng(2)
        )
        shadowed = project_transport(
            quad_scene, ShadowedTransport(), 400, np.random.default_rng(2)
        )
        np.testing.assert_allclose(shadowed, unshadowed, atol=1e-12)

    def test_occluder_reduces_transport(self, occluded_scene):
        """Test a plane above the quad lowers the zeroth coefficient."""
        unshadowed = project_transport(
            occluded_scene, UnshadowedTransport(), 400, np.random.default_rng(3)
        )
        shadowed = project_transport(
            occluded_scene, ShadowedTransport(), 400, np.random.default_rng(3)
        )
        assert np.all(shadowed[0, :4] < unshadowed[0, :4])
        assert np.all(shadowed[0, :4] >= 0)

    def test_enclosed_vertex_is_zero(self, enclosed_scene):
        """Test a fully enclosed vertex gets all-zero shadowed transport."""
        shadowed = project_transport(
            enclosed_scene, ShadowedTransport(), 400, np.random.default_rng(4)
        )
        unshadowed = project_transport(
            enclosed_scene, UnshadowedTransport(), 400, np.random.default_rng(4)
        )
        centre = enclosed_scene.vertex_count - 1
        np.testing.assert_array_equal(shadowed[:, centre], 0.0)
        assert unshadowed[0, centre] > 0

    def test_transport_deterministic(self, occluded_scene):
        """Test a fixed seed reproduces transport exactly."""
        policy = resolve_transport_policy("interreflection", bounces=2)
        a = precompute_transport(occluded_scene, policy, 64, np.random.default_rng(11),
                                 vertex_batch_size=3)
        b = precompute_transport(occluded_scene, policy, 64, np.random.default_rng(11),
                                 vertex_batch_size=3)
        assert np.array_equal(a, b)


class TestInterreflection:
    """Tests for interreflection bounces."""

    def test_monotonic_bounces(self, occluded_scene):
        """Test zeroth coefficients never decrease across bounces."""
        rng = np.random.default_rng(21)
        base = project_transport(occluded_scene, ShadowedTransport(), 256, rng)

        accumulator = InterreflectionAccumulator(occluded_scene, 256, rng)
        final = accumulator.run(base, bounces=3)

        history = np.array(accumulator.history)
        assert history.shape == (4, occluded_scene.vertex_count)
        assert np.all(np.diff(history, axis=0) >= 0)
        np.testing.assert_array_equal(history[-1], final[0])

    def test_bounce_adds_light_under_occluder(self, occluded_scene):
        """Test the occluded quad receives indirect transport."""
        rng = np.random.default_rng(5)
        base = project_transport(occluded_scene, ShadowedTransport(), 256, rng)
        buffer = InterreflectionAccumulator(occluded_scene, 256, rng).bounce(base)
        assert np.all(buffer[0, :4] > 0)

    def test_bounce_does_not_modify_input(self, occluded_scene):
        """Test the previous transport is only read."""
        rng = np.random.default_rng(6)
        base = project_transport(occluded_scene, ShadowedTransport(), 100, rng)
        before = base.copy()
        InterreflectionAccumulator(occluded_scene, 100, rng).bounce(base)
        np.testing.assert_array_equal(base, before)

    def test_open_scene_gets_no_bounce(self, quad_scene):
        """Test a lone plane has nothing to bounce off."""
        rng = np.random.default_rng(7)
        base = project_transport(quad_scene, ShadowedTransport(), 100, rng)
        buffer = InterreflectionAccumulator(quad_scene, 100, rng).bounce(base)
        np.testing.assert_array_equal(buffer, 0.0)

    def test_bounce_reproducible(self, occluded_scene):
        """Test a bounce is reproducible from the same seed."""
        base = project_transport(occluded_scene, ShadowedTransport(), 64, np.random.default_rng(8))
        a = InterreflectionAccumulator(occluded_scene, 64, np.random.default_rng(9),
                                       vertex_batch_size=1).bounce(base)
        b = InterreflectionAccumulator(occluded_scene, 64, np.random.default_rng(9),
                                       vertex_batch_size=1).bounce(base)
        np.testing.assert_array_equal(a, b)

    def test_shape_mismatch(self, quad_scene):
        """Test transport of the wrong shape is rejected."""
        accumulator = InterreflectionAccumulator(quad_scene, 16, np.random.default_rng(0))
        with pytest.raises(ValueError):
            accumulator.bounce(np.zeros((9, 3)))


class TestRuntimeEvaluator:
    """Tests for runtime reconstruction."""

    @pytest.fixture
    def uniform_light(self):
        return project_cubemap_to_sh(make_uniform_faces(size=16))

    @pytest.mark.slow
    def test_quad_centre_color(self, quad_scene, uniform_light):
        """Test the flat quad under uniform light shades to pi * L."""
        transport = project_transport(
            quad_scene, UnshadowedTransport(), 2500, np.random.default_rng(1)
        )
        evaluator = RuntimeEvaluator(quad_scene, uniform_light, transport)
        color = evaluator.shade([0.01, 2.0, 0.02], [0.0, -1.0, 0.0])
        np.testing.assert_allclose(color, np.pi, rtol=0.03)

    @pytest.mark.slow
    def test_albedo_normalization(self, quad_scene, uniform_light):
        """Test albedo / pi scaling gives albedo * L."""
        transport = project_transport(
            quad_scene, UnshadowedTransport(), 2500, np.random.default_rng(1)
        )
        evaluator = RuntimeEvaluator(quad_scene, uniform_light, transport, albedo=0.5)
        color = evaluator.shade([0.01, 2.0, 0.02], [0.0, -1.0, 0.0])
        np.testing.assert_allclose(color, 0.5, rtol=0.03)

    def test_miss_returns_background(self, quad_scene, uniform_light):
        """Test rays missing the mesh return the background colour."""
        transport = np.ones((9, 4))
        evaluator = RuntimeEvaluator(quad_scene, uniform_light, transport)
        np.testing.assert_array_equal(evaluator.shade([0, 2, 0], [0, 1, 0]), 0.0)

    def test_barycentric_interpolation(self, quad_scene):
        """Test hits blend per-vertex colours by barycentric weights."""
        light = np.zeros((9, 3))
        light[0] = [1.0, 2.0, 3.0]
        transport = np.zeros((9, 4))
        transport[0] = [0.0, 1.0, 2.0, 3.0]
        evaluator = RuntimeEvaluator(quad_scene, light, transport)

        hit = quad_scene.ray_intersect([0.5, 1.0, -0.5], [0.0, -1.0, 0.0])
        expected_dc = hit.barycentric @ transport[0, hit.vertex_indices]
        np.testing.assert_allclose(
            evaluator.shade([0.5, 1.0, -0.5], [0.0, -1.0, 0.0]),
            expected_dc * np.array([1.0, 2.0, 3.0])
        )

    def test_batched_matches_single(self, quad_scene):
        """Test batched shading agrees with per-ray shading."""
        rng = np.random.default_rng(0)
        light = rng.random((9, 3))
        transport = rng.random((9, 4))
        evaluator = RuntimeEvaluator(quad_scene, light, transport)

        origins = np.array([[0.3, 1.0, 0.2], [-0.4, 1.0, -0.7], [5.0, 1.0, 5.0]])
        directions = np.tile([0.0, -1.0, 0.0], (3, 1))
        batched = evaluator.shade_rays(origins, directions)
        for o, d, c in zip(origins, directions, batched):
            np.testing.assert_allclose(evaluator.shade(o, d), c)

    def test_vertex_colors(self, quad_scene):
        """Test per-vertex colours are transport . light per channel."""
        rng = np.random.default_rng(1)
        light = rng.random((9, 3))
        transport = rng.random((9, 4))
        colors = RuntimeEvaluator(quad_scene, light, transport).vertex_colors()
        for v in range(4):
            for c in range(3):
                assert np.isclose(colors[v, c], np.dot(transport[:, v], light[:, c]))

    def test_shape_validation(self, quad_scene):
        """Test mismatched coefficient shapes are rejected."""
        with pytest.raises(ValueError):
            RuntimeEvaluator(quad_scene, np.zeros((4, 3)), np.zeros((9, 4)))
        with pytest.raises(ValueError):
            RuntimeEvaluator(quad_scene, np.zeros((9, 3)), np.zeros((9, 5)))
