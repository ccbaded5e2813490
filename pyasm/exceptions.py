"""
Error types raised by pyasm.

Only model/configuration problems and API misuse reach the caller. Numerical
trouble during a fit is absorbed by the search and never raised.
"""


class ASMError(Exception):
    """Base class for all pyasm errors."""


class ModelConfigurationError(ASMError):
    """The trained model is malformed or incompatible with the requested fit.

    Raised for wrong landmark counts, missing pyramid levels, profile length
    mismatches and out-of-range landmark/level lookups.
    """


class ASMUsageError(ASMError):
    """The API was used in an invalid order (e.g. a result without a model)."""
