"""Types used across torch-almo."""

from enum import IntEnum, StrEnum

import torch


# One matrix per spin channel
SpinMatrices = list[torch.Tensor] | tuple[torch.Tensor, ...]


class Track(IntEnum):
    """The two quantities stored in every history slot.

    The integer value is the position of the track inside a slot.
    """

    variable = 0
    gradient = 1


class HistoryStatus(StrEnum):
    """Lifecycle of an L-BFGS history."""

    created = "created"
    seeded = "seeded"
    released = "released"
