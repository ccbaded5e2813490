"""
pyasm core - shape model, appearance model and pyramid search
"""

from .transform import SimilarityTransform
from .pdm import PDM, chain_neighbors
from .profile_model import ProfileModel, sample_profiles
from .btsm import BTSMEstimator, ShapeEstimate
from .search import PyramidSearchEngine, build_image_pyramid

__all__ = ['SimilarityTransform', 'PDM', 'chain_neighbors', 'ProfileModel', 'sample_profiles',
           'BTSMEstimator', 'ShapeEstimate', 'PyramidSearchEngine', 'build_image_pyramid']
