"""
Bingham Normal ICP: rigid registration of point clouds with normals, tracking
orientation uncertainty as a Bingham distribution over quaternions.

Layout:
- common/: constants, errors, quaternion conversions, parameter models
- frontend/: correspondence search
- backend/: measurement kernel, Bingham Normal Kalman Filter, registration loop
"""

__version__ = "0.1.0"
