"""
Frontend package for Bingham Normal ICP.

Data wrangling around the estimator: correspondence search over the fixed
cloud. No filter math here.
"""

from __future__ import annotations

from importlib import import_module
from typing import Any

__all__ = [
    "CorrespondenceIndex",
    "CorrespondenceResult",
    "CorrespondenceSearch",
    "KDTreeCorrespondenceSearch",
    "build_index",
    "search",
]

_LAZY_ATTRS: dict[str, tuple[str, str]] = {
    name: ("bingham_icp.frontend.correspondence", name) for name in __all__
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
