"""
Error kinds raised by the registration core.

Dimension problems fail fast at the point of detection. Numerical degeneracy
(near-singular inverses, near-zero eigenvalues) is handled inside the filter
and never surfaces here.
"""


class BinghamICPError(Exception):
    """Base class for all registration errors."""


class DimensionMismatchError(BinghamICPError, ValueError):
    """State, matrix or correspondence batch has the wrong shape."""


class InvalidPointDimensionError(DimensionMismatchError):
    """A point cloud handed to the registration entry point is not 3-row."""


class CorrespondenceSplitError(BinghamICPError, RuntimeError):
    """Odd/even correspondence split exceeded its batch capacity."""


class InvalidNoiseError(BinghamICPError, ValueError):
    """Measurement noise magnitude is non-finite or not positive."""


class DegenerateQuaternionError(BinghamICPError, ValueError):
    """Zero-norm quaternion where a rotation is required."""
