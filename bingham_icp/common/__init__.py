"""
Common package for Bingham Normal ICP.

Shared utilities used by both frontend and backend.

Modules:
- constants: numerical and default constants
- errors: error kinds
- quaternion: quaternion / Euler / rotation matrix conversions
- param_models: pydantic parameter models and YAML loading
"""

from __future__ import annotations

from importlib import import_module
from typing import Any

__all__ = [
    "RegistrationParams",
    "load_registration_params",
    "constants",
    "errors",
]

_LAZY_ATTRS: dict[str, tuple[str, str | None]] = {
    "RegistrationParams": ("bingham_icp.common.param_models", "RegistrationParams"),
    "load_registration_params": ("bingham_icp.common.param_models", "load_registration_params"),
    # Expose these as submodules, but do not eagerly import them at package import time.
    "constants": ("bingham_icp.common.constants", None),
    "errors": ("bingham_icp.common.errors", None),
}


def __getattr__(name: str) -> Any:
    target = _LAZY_ATTRS.get(name)
    if target is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module_name, attr_name = target
    module = import_module(module_name)
    return module if attr_name is None else getattr(module, attr_name)


def __dir__() -> list[str]:
    return sorted(set(globals().keys()) | set(_LAZY_ATTRS.keys()))
