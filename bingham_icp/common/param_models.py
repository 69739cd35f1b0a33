"""Pydantic parameter models for Bingham Normal ICP."""

from __future__ import annotations

import os
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from bingham_icp.common import constants


class RegistrationParams(BaseModel):
    """Registration loop parameters (window sampling, noise model, convergence)."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    window_size: int = Field(constants.WINDOW_SIZE_DEFAULT, ge=1)
    inlier_ratio: float = Field(constants.INLIER_RATIO_DEFAULT, gt=0.0, le=1.0)
    max_iterations: int = Field(constants.MAX_ITERATIONS_DEFAULT, ge=1)
    min_iterations: int = Field(constants.MIN_ITERATIONS_DEFAULT, ge=1)

    tol_translation: float = Field(constants.TOL_TRANSLATION_DEFAULT, gt=0.0)
    tol_rotation: float = Field(constants.TOL_ROTATION_DEFAULT, gt=0.0)

    initial_concentration: float = Field(constants.INITIAL_CONCENTRATION_DEFAULT, gt=0.0)
    noise_floor: float = Field(constants.NOISE_FLOOR_DEFAULT, gt=0.0)
    noise_residual_scale: float = Field(constants.NOISE_RESIDUAL_SCALE_DEFAULT, gt=0.0)

    @model_validator(mode="after")
    def _check_truncated_window(self) -> "RegistrationParams":
        # Both odd/even batches need at least one column.
        if int(self.window_size * self.inlier_ratio) < 2:
            raise ValueError(
                f"window_size * inlier_ratio must keep at least 2 correspondences "
                f"(window_size={self.window_size}, inlier_ratio={self.inlier_ratio})"
            )
        return self


def _load_yaml_file(path: str) -> Dict[str, Any]:
    """Load a YAML config file, unwrapping the optional bingham_icp: section."""
    import yaml

    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"config {path} must contain a mapping, got {type(data).__name__}")
    if constants.CONFIG_ROOT_KEY in data:
        data = data[constants.CONFIG_ROOT_KEY] or {}
    return dict(data)


def load_registration_params(
    path: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> RegistrationParams:
    """
    Build RegistrationParams from an optional YAML file plus overrides.

    Overrides win over file values; unknown keys are rejected by the model.
    """
    values: Dict[str, Any] = {}
    if path is not None:
        if not os.path.exists(path):
            raise FileNotFoundError(f"config file not found: {path}")
        values.update(_load_yaml_file(path))
    if overrides:
        values.update({k: v for k, v in overrides.items() if v is not None})
    return RegistrationParams(**values)
