"""
Backend package for Bingham Normal ICP.

All estimation math lives here:
- measurement: quaternion measurement function and Jacobian
- bingham_kf: Bingham Normal Kalman Filter update
- registration: registration loop and convergence test
- diagnostics: per-iteration records
"""

from __future__ import annotations

from importlib import import_module
from typing import Any

__all__ = [
    "BinghamState",
    "bingham_normal_kf",
    "bingham_update",
    "BinghamNormalRegistration",
    "RegistrationResult",
    "RegistrationStatus",
    "registration_est_bingham_normal",
    "pose_delta",
    "IterationDiagnostics",
]

_LAZY_ATTRS: dict[str, tuple[str, str]] = {
    "BinghamState": ("bingham_icp.backend.bingham_kf", "BinghamState"),
    "bingham_normal_kf": ("bingham_icp.backend.bingham_kf", "bingham_normal_kf"),
    "bingham_update": ("bingham_icp.backend.bingham_kf", "bingham_update"),
    "BinghamNormalRegistration": ("bingham_icp.backend.registration", "BinghamNormalRegistration"),
    "RegistrationResult": ("bingham_icp.backend.registration", "RegistrationResult"),
    "RegistrationStatus": ("bingham_icp.backend.registration", "RegistrationStatus"),
    "registration_est_bingham_normal": ("bingham_icp.backend.registration", "registration_est_bingham_normal"),
    "pose_delta": ("bingham_icp.backend.registration", "pose_delta"),
    "IterationDiagnostics": ("bingham_icp.backend.diagnostics", "IterationDiagnostics"),
}


def __getattr__(name: str) -> Any:
    target = _LAZY_ATTRS.get(name)
    if target is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module_name, attr_name = target
    module = import_module(module_name)
    return getattr(module, attr_name)


def __dir__() -> list[str]:
    return sorted(set(globals().keys()) | set(_LAZY_ATTRS.keys()))
