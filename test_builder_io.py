import numpy as np
import pytest

from pyasm import ASMModel, load_model, save_model
from pyasm.builder import align_shapes, build_profile_model, build_shape_model, similarity_basis
from pyasm.core.transform import SimilarityTransform
from pyasm.exceptions import ModelConfigurationError
from synthetic_shapes import bounding_region, make_shape


def test_align_shapes_removes_similarity():
    base = make_shape(c1=0.05)
    poses = [SimilarityTransform(scale=s, rotation=r, tx=t, ty=-t)
             for s, r, t in [(1.0, 0.0, 0.0), (0.5, 0.7, 30.0), (2.0, -1.2, -15.0)]]
    shapes = [pose.apply(base) for pose in poses]

    mean, aligned = align_shapes(shapes)
    np.testing.assert_allclose(np.linalg.norm(mean), 1.0)
    np.testing.assert_allclose(mean.mean(axis=0), 0.0, atol=1e-12)
    for shape in aligned:
        np.testing.assert_allclose(shape, mean, atol=1e-9)


def test_similarity_basis_is_orthonormal():
    basis = similarity_basis(make_shape())
    assert basis.shape == (2 * 16, 4)
    np.testing.assert_allclose(basis.T @ basis, np.eye(4), atol=1e-12)

    single = similarity_basis(np.zeros((1, 2)))
    assert single.shape == (2, 2)


def test_shape_model_modes(training_set):
    _, shapes = training_set
    pdm = build_shape_model(shapes)
    assert 1 <= pdm.n_modes <= 2 * pdm.n_points - 4
    np.testing.assert_allclose(pdm.princ_comp.T @ pdm.princ_comp, np.eye(pdm.n_modes), atol=1e-10)
    assert np.all(np.diff(pdm.eigen_values) <= 0)

    assert build_shape_model(shapes, max_components=1).n_modes == 1
    assert build_shape_model(shapes, variance_retained=1.0).n_modes >= pdm.n_modes


def test_profile_model_statistics(training_set, shape_model):
    images, shapes = training_set
    profiles = build_profile_model(images[:6], shapes[:6], shape_model, n_levels=2, profile_half_length=2)
    assert profiles.means.shape == (2, shape_model.n_points, 5)
    assert profiles.inv_covs.shape == (2, shape_model.n_points, 5, 5)
    np.testing.assert_allclose(profiles.inv_covs, np.swapaxes(profiles.inv_covs, -1, -2), atol=1e-6)
    assert np.all(np.linalg.eigvalsh(profiles.inv_covs) > 0)


def test_profile_training_input_checks(training_set, shape_model):
    images, shapes = training_set
    with pytest.raises(ValueError):
        build_profile_model(images[:2], shapes[:3], shape_model)
    with pytest.raises(ModelConfigurationError):
        build_profile_model(images[:1], [np.zeros((3, 2))], shape_model)


def test_saved_model_fits_identically(model, training_set, tmp_path):
    images, shapes = training_set
    path = tmp_path / "model.npz"
    model.save(path)

    loaded = ASMModel.load(path, model.config)
    np.testing.assert_array_equal(loaded.shape_model.princ_comp, model.shape_model.princ_comp)
    np.testing.assert_array_equal(loaded.profile_model.inv_covs, model.profile_model.inv_covs)

    region = bounding_region(shapes[0], dx=3.0, dy=1.0)
    assert (loaded.fit_all(images[0], [region])[0].to_point_list()
            == model.fit_all(images[0], [region])[0].to_point_list())


def test_load_rejects_incomplete_archive(tmp_path):
    path = tmp_path / "broken.npz"
    np.savez_compressed(path, mean_shape=np.zeros((3, 2)))
    with pytest.raises(ModelConfigurationError):
        load_model(path)


def test_load_rejects_newer_format(model, tmp_path):
    path = tmp_path / "model.npz"
    save_model(model, path)
    with np.load(path) as data:
        arrays = dict(data)
    arrays['format_version'] = np.int64(99)
    np.savez_compressed(path, **arrays)
    with pytest.raises(ModelConfigurationError):
        load_model(path)


def test_model_info(model):
    info = model.get_info()
    assert info['n_points'] == 16
    assert info['n_levels'] == 2
    assert info['profile_model']['profile_length'] == 7
    assert info['shape_model']['n_modes'] == model.shape_model.n_modes
