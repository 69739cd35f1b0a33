"""
Bingham Normal ICP constants only.

=============================================================================
CONVENTION QUICK REFERENCE
=============================================================================

QUATERNIONS:
  Stored as 4-vectors in (w, x, y, z) order.
  q and -q are the same rotation; the Bingham density is antipodally symmetric.

POSES:
  Internal 6D: [tx, ty, tz, yaw, pitch, roll]
  Rotation:    R = Rz(yaw) @ Ry(pitch) @ Rx(roll)
  Transform:   p_fixed = R @ p_moving + t

POINT CLOUDS:
  Column vectors, shape (3, N). Normals use the same layout.
=============================================================================
"""

# =============================================================================
# DIMENSIONS
# =============================================================================

POINT_DIM = 3  # Row count of every point / normal cloud
QUAT_DIM = 4  # Quaternion state and concentration matrix size
POSE_DIM = 6  # [translation(3), euler(3)]

# =============================================================================
# REGISTRATION LOOP DEFAULTS
# =============================================================================

WINDOW_SIZE_DEFAULT = 20  # Moving-cloud columns consumed per iteration
INLIER_RATIO_DEFAULT = 1.0  # Fraction of each correspondence window kept
MAX_ITERATIONS_DEFAULT = 100  # Hard ceiling on iterations
MIN_ITERATIONS_DEFAULT = 20  # Convergence is not tested before this iteration

# Convergence tolerances between consecutive pose estimates
TOL_TRANSLATION_DEFAULT = 1e-4  # ||dT|| (same units as the clouds)
TOL_ROTATION_DEFAULT = 9e-3  # ||dR|| (radians, Euler components)

# Initial concentration: Z = diag(0, -eps, -eps, -eps), "almost no information"
INITIAL_CONCENTRATION_DEFAULT = 1e-300

# Adaptive measurement noise: mag = floor + (residual / scale)^2
NOISE_FLOOR_DEFAULT = 0.04
NOISE_RESIDUAL_SCALE_DEFAULT = 6.0

# =============================================================================
# NUMERICAL CONSTANTS (stability, not policy)
# =============================================================================

# Near-singular regime for the concentration inverse: c^2 < this triggers
# scaled inversion (divide by SCALE, invert, divide by SCALE again).
SINGULAR_CONCENTRATION_THRESHOLD = 1e-100
INVERSION_SCALE = 1e-100

# Eigenvalues of the measurement noise matrix at or below this floor carry
# no information and are replaced by EIGENVALUE_REPLACEMENT before inversion.
EIGENVALUE_FLOOR = 1e-4
EIGENVALUE_REPLACEMENT = 1.0

# Zero-norm guard for quaternion normalization
QUAT_NORM_EPSILON = 1e-12

# =============================================================================
# CONFIG
# =============================================================================

CONFIG_ROOT_KEY = "bingham_icp"  # Optional top-level key in YAML config files
