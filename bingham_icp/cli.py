#!/usr/bin/env python3
"""
Register two point clouds with normals from the command line.

Each cloud is a .npy array or a whitespace text file with rows
    x y z nx ny nz
The moving cloud is aligned onto the fixed cloud; the final pose
[tx, ty, tz, yaw, pitch, roll] and the status are printed.

Example:
    bingham_register scan.txt model.txt --config config/bingham_icp.yaml --output out/run1
"""

import argparse
import logging
import os
import sys
from typing import List, Optional, Tuple

import numpy as np

from bingham_icp.backend.diagnostics import diagnostics_to_json
from bingham_icp.backend.registration import registration_est_bingham_normal
from bingham_icp.common.errors import BinghamICPError
from bingham_icp.common.param_models import load_registration_params

_logger = logging.getLogger("bingham_icp.cli")


def load_cloud(path: str) -> Tuple[np.ndarray, np.ndarray]:
    """Load (points, normals), each (3, N), from an (N, 6) .npy or text file."""
    if path.endswith(".npy"):
        data = np.load(path)
    else:
        data = np.loadtxt(path, ndmin=2)
    data = np.asarray(data, dtype=float)
    if data.ndim != 2 or data.shape[1] != 6:
        raise ValueError(f"{path}: expected rows of x y z nx ny nz, got shape {data.shape}")
    return data[:, :3].T.copy(), data[:, 3:6].T.copy()


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Bingham normal ICP registration")
    ap.add_argument("moving", help="Moving cloud (.npy or text, rows x y z nx ny nz)")
    ap.add_argument("fixed", help="Fixed cloud (.npy or text, rows x y z nx ny nz)")
    ap.add_argument("--config", default=None, help="YAML parameter file")
    ap.add_argument("--window-size", type=int, default=None, help="Override window_size")
    ap.add_argument("--inlier-ratio", type=float, default=None, help="Override inlier_ratio")
    ap.add_argument("--output", default=None, help="Output prefix for pose / history / diagnostics files")
    ap.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING, ...)")
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        params = load_registration_params(
            args.config,
            overrides={"window_size": args.window_size, "inlier_ratio": args.inlier_ratio},
        )
        moving, normal_moving = load_cloud(args.moving)
        fixed, normal_fixed = load_cloud(args.fixed)
        result = registration_est_bingham_normal(moving, fixed, normal_moving, normal_fixed, params=params)
    except (BinghamICPError, ValueError, OSError) as e:
        _logger.error("Registration failed: %s", e)
        return 1

    print(f"status: {result.status.value}")
    print(f"iterations: {result.iterations}")
    print("pose: " + " ".join(f"{v:.9f}" for v in result.pose))

    if args.output:
        out_dir = os.path.dirname(os.path.abspath(args.output))
        os.makedirs(out_dir, exist_ok=True)
        np.savetxt(f"{args.output}_pose.txt", result.pose.reshape(1, -1),
                   header="tx ty tz yaw pitch roll")
        np.savetxt(f"{args.output}_history.txt", result.pose_history,
                   header="tx ty tz yaw pitch roll")
        with open(f"{args.output}_diagnostics.json", "w", encoding="utf-8") as f:
            f.write(diagnostics_to_json(result.diagnostics))
        _logger.info("Results written with prefix %s", args.output)

    return 0


if __name__ == "__main__":
    sys.exit(main())
