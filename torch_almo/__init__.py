"""torch-almo: limited-memory BFGS history for ALMO SCF in PyTorch."""

from importlib.metadata import PackageNotFoundError, version

from torch_almo import optimizers
from torch_almo.exceptions import InvalidArgumentError, ProtocolViolationError
from torch_almo.matrix import MatrixBackend, TorchMatrixBackend
from torch_almo.optimizers import (
    LBFGSHistory,
    lbfgs_create,
    lbfgs_get_direction,
    lbfgs_release,
    lbfgs_seed,
)
from torch_almo.typing import HistoryStatus, Track


try:
    __version__ = version("torch-almo")
except PackageNotFoundError:
    __version__ = "0.0.0"

# must stay last, see module docstring
from torch_almo import _citations  # noqa: E402, F401
