"""
NumPy archive (.npz) model files.

One compressed archive holds everything an ASMModel needs:

    mean_shape        (n_points, 2)
    princ_comp        (2 * n_points, m)
    eigen_values      (m,)
    neighbors         (n_points, 2)
    profile_means     (n_levels, n_points, P)
    profile_inv_covs  (n_levels, n_points, P, P)
    format_version    scalar
"""

import logging
from pathlib import Path
from typing import Optional, Union

import numpy as np

from ..asm import ASMModel
from ..config import FitConfig
from ..core.pdm import PDM
from ..core.profile_model import ProfileModel
from ..exceptions import ModelConfigurationError

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1

_REQUIRED_ARRAYS = ('mean_shape', 'princ_comp', 'eigen_values', 'neighbors',
                    'profile_means', 'profile_inv_covs')


def save_model(model: ASMModel, path: Union[str, Path]):
    """
    Write a model to a compressed .npz archive.

    Args:
        model: Model to save
        path: Output file; numpy appends '.npz' when the name has no suffix
    """
    pdm = model.shape_model
    profiles = model.profile_model
    np.savez_compressed(
        path,
        format_version=np.int64(FORMAT_VERSION),
        mean_shape=pdm.mean_shape,
        princ_comp=pdm.princ_comp,
        eigen_values=pdm.eigen_values,
        neighbors=pdm.neighbors,
        profile_means=profiles.means,
        profile_inv_covs=profiles.inv_covs,
    )
    logger.debug("Saved ASM model (%d landmarks, %d levels) to %s",
                 pdm.n_points, profiles.n_levels, path)


def load_model(path: Union[str, Path], config: Optional[FitConfig] = None) -> ASMModel:
    """
    Read a model written by save_model.

    Args:
        path: .npz archive
        config: Fitting options for the loaded model

    Returns:
        model: ASMModel
    """
    with np.load(path) as data:
        missing = [name for name in _REQUIRED_ARRAYS if name not in data.files]
        if missing:
            raise ModelConfigurationError(f"Model file {path} is missing arrays: {', '.join(missing)}")

        version = int(data['format_version']) if 'format_version' in data.files else FORMAT_VERSION
        if version > FORMAT_VERSION:
            raise ModelConfigurationError(
                f"Model file {path} has format version {version}, "
                f"this pyasm reads up to {FORMAT_VERSION}")

        pdm = PDM(data['mean_shape'], data['princ_comp'], data['eigen_values'],
                  neighbors=data['neighbors'])
        profiles = ProfileModel(data['profile_means'], data['profile_inv_covs'])

    return ASMModel(pdm, profiles, config)
