"""Quasi-Newton optimizers for ALMO SCF."""

from torch_almo.optimizers.lbfgs import (
    LBFGSHistory,
    lbfgs_create,
    lbfgs_get_direction,
    lbfgs_release,
    lbfgs_seed,
)


__all__ = [
    "LBFGSHistory",
    "lbfgs_create",
    "lbfgs_get_direction",
    "lbfgs_release",
    "lbfgs_seed",
]
