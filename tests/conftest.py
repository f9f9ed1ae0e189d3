import pytest
import torch

from torch_almo.testing import RecordingBackend


DEVICE = torch.device("cpu")
DTYPE = torch.float64


def scalars(*values: float) -> list[torch.Tensor]:
    """1x1 matrices standing in for scalars, one per spin."""
    return [torch.tensor([[value]], device=DEVICE, dtype=DTYPE) for value in values]


@pytest.fixture
def recording_backend() -> RecordingBackend:
    return RecordingBackend()


@pytest.fixture
def quadratic_2x2() -> torch.Tensor:
    """SPD Hessian for a 2-element variable."""
    return torch.tensor([[3.0, 1.0], [1.0, 2.0]], device=DEVICE, dtype=DTYPE)
