"""Shared fixtures: synthetic blob images with known landmarks and a model trained on them."""

import numpy as np
import pytest

from pyasm import FitConfig
from pyasm.builder import build_asm, build_shape_model, chain_neighbors
from synthetic_shapes import N_LANDMARKS, make_shape, render_shape

N_TRAINING = 24


@pytest.fixture(scope="session")
def training_set():
    rng = np.random.default_rng(7)
    shapes = [make_shape()]
    for _ in range(N_TRAINING - 1):
        shapes.append(make_shape(c1=rng.uniform(-0.08, 0.08),
                                 c2=rng.uniform(-0.08, 0.08),
                                 scale=rng.uniform(45.0, 55.0),
                                 rotation=rng.uniform(-0.05, 0.05),
                                 center=100.0 + rng.uniform(-5.0, 5.0, size=2)))
    images = [render_shape(shape) for shape in shapes]
    return images, shapes


@pytest.fixture(scope="session")
def fit_config():
    return FitConfig(search_radius=4, max_iterations=15)


@pytest.fixture(scope="session")
def model(training_set, fit_config):
    images, shapes = training_set
    return build_asm(images, shapes, n_levels=2, profile_half_length=3,
                     neighbors=chain_neighbors(N_LANDMARKS, closed=True), config=fit_config)


@pytest.fixture(scope="session")
def shape_model(training_set):
    _, shapes = training_set
    return build_shape_model(shapes, neighbors=chain_neighbors(N_LANDMARKS, closed=True))
