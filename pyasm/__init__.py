"""
pyasm - Active Shape Model landmark fitting

Multi-resolution ASM search with Mahalanobis profile matching and Bayesian
Tangent Shape Model regularization.

Usage:
    from pyasm import ASMModel, FitConfig

    model = ASMModel.load("model.npz", FitConfig(verbosity="at-level"))
    results = model.fit_all(image, regions)
"""

from .asm import ASMModel, clamp_region
from .builder import build_asm, build_profile_model, build_shape_model
from .config import FitConfig, Verbosity
from .core import PDM, BTSMEstimator, ProfileModel, PyramidSearchEngine, SimilarityTransform
from .exceptions import ASMError, ASMUsageError, ModelConfigurationError
from .models import load_model, save_model
from .observer import FitObserver, LoggingObserver
from .result import ASMFitResult, LevelReport

__version__ = "0.1.0"

__all__ = [
    'ASMModel', 'ASMFitResult', 'LevelReport', 'FitConfig', 'Verbosity',
    'PDM', 'ProfileModel', 'BTSMEstimator', 'PyramidSearchEngine', 'SimilarityTransform',
    'FitObserver', 'LoggingObserver',
    'ASMError', 'ASMUsageError', 'ModelConfigurationError',
    'build_asm', 'build_shape_model', 'build_profile_model', 'clamp_region',
    'load_model', 'save_model',
]
