"""Testing utilities for torch-almo.

This module provides reference implementations and matrix generators that can
be used to validate the L-BFGS history and custom matrix backends, both within
torch-almo's test suite and in packages that plug in their own backend.

Example usage in another repo::

    import pytest
    import torch
    from torch_almo.testing import (
        MATRIX_GENERATORS,
        assert_history_matches_reference,
    )

    DEVICE = torch.device("cpu")
    DTYPE = torch.float64


    @pytest.mark.parametrize("generator_name", MATRIX_GENERATORS)
    def test_my_backend(generator_name, my_backend):
        assert_history_matches_reference(
            my_backend, MATRIX_GENERATORS[generator_name], DEVICE, DTYPE
        )
"""

import math
from collections.abc import Callable, Sequence
from typing import Final

import torch

import torch_almo as ta
from torch_almo.matrix import TorchMatrixBackend


class RecordingBackend(TorchMatrixBackend):
    """Torch backend that records matrix ownership.

    Attributes:
        n_created (int): Number of :meth:`create` calls
        n_released (int): Number of :meth:`release` calls
        live (dict[int, torch.Tensor]): Matrices obtained from :meth:`create`
            or returned by later operations and not yet released, keyed by id
    """

    def __init__(self) -> None:
        self.n_created = 0
        self.n_released = 0
        self.live: dict[int, torch.Tensor] = {}

    def _track(self, old: torch.Tensor, new: torch.Tensor) -> torch.Tensor:
        if id(old) in self.live and new is not old:
            del self.live[id(old)]
            self.live[id(new)] = new
        return new

    def create(self, template: torch.Tensor) -> torch.Tensor:  # noqa: D102
        matrix = super().create(template)
        self.n_created += 1
        self.live[id(matrix)] = matrix
        return matrix

    def copy(self, dst: torch.Tensor, src: torch.Tensor) -> torch.Tensor:  # noqa: D102
        return self._track(dst, super().copy(dst, src))

    def axpy(  # noqa: D102
        self,
        dst: torch.Tensor,
        src: torch.Tensor,
        scale_dst: float,
        scale_src: float,
    ) -> torch.Tensor:
        return self._track(dst, super().axpy(dst, src, scale_dst, scale_src))

    def scale(self, dst: torch.Tensor, factor: float) -> torch.Tensor:  # noqa: D102
        return self._track(dst, super().scale(dst, factor))

    def release(self, matrix: torch.Tensor) -> None:
        """Release ``matrix``, failing if it was never created or is gone."""
        if id(matrix) not in self.live:
            raise AssertionError("Released a matrix that is not owned by the backend")
        super().release(matrix)
        del self.live[id(matrix)]
        self.n_released += 1


def dense_inverse_hessian(
    s_list: Sequence[torch.Tensor], y_list: Sequence[torch.Tensor]
) -> torch.Tensor:
    r"""Explicit L-BFGS inverse Hessian from stored pairs.

    Starts from $H_0 = \gamma I$ with $\gamma = s^T y / y^T y$ of the newest pair
    and applies $H \leftarrow V^T H V + \rho s s^T$, $V = I - \rho y s^T$, from the
    oldest pair to the newest. Matrices are flattened, sparse inputs densified.

    Args:
        s_list: Variable differences, oldest first
        y_list: Gradient differences, oldest first

    Returns:
        torch.Tensor: Inverse Hessian approximation of shape [n, n]
    """
    if len(s_list) != len(y_list) or not s_list:
        raise ValueError("Need the same, non-zero number of s and y matrices")

    s_vecs = [s.to_dense().reshape(-1) if s.is_sparse else s.reshape(-1) for s in s_list]
    y_vecs = [y.to_dense().reshape(-1) if y.is_sparse else y.reshape(-1) for y in y_list]
    n = s_vecs[0].numel()
    eye = torch.eye(n, dtype=s_vecs[0].dtype, device=s_vecs[0].device)

    gamma = torch.dot(s_vecs[-1], y_vecs[-1]) / torch.dot(y_vecs[-1], y_vecs[-1])
    hess_inv = gamma * eye
    for s, y in zip(s_vecs, y_vecs, strict=True):
        rho = 1.0 / torch.dot(y, s)
        v = eye - rho * torch.outer(y, s)
        hess_inv = v.mT @ hess_inv @ v + rho * torch.outer(s, s)
    return hess_inv


def dense_lbfgs_direction(
    s_list: Sequence[torch.Tensor],
    y_list: Sequence[torch.Tensor],
    gradient: torch.Tensor,
) -> torch.Tensor:
    """Reference search direction ``-H g`` shaped like ``gradient``."""
    grad = gradient.to_dense() if gradient.is_sparse else gradient
    hess_inv = dense_inverse_hessian(s_list, y_list)
    return -(hess_inv @ grad.reshape(-1)).reshape(grad.shape)


def make_quadratic_problem(
    n: int,
    device: torch.device | None = None,
    dtype: torch.dtype | None = None,
    *,
    seed: int = 0,
    condition: float = 10.0,
) -> tuple[torch.Tensor, torch.Tensor]:
    """Random SPD matrix ``A`` and vector ``b`` for f(x) = x^T A x / 2 - b^T x.

    The eigenvalues of ``A`` are spread log-uniformly over [1, condition].
    """
    gen = torch.Generator(device=device or "cpu").manual_seed(seed)
    dtype = dtype or torch.float64
    q, _ = torch.linalg.qr(
        torch.randn((n, n), generator=gen, device=device, dtype=dtype)
    )
    eigvals = torch.logspace(0, math.log10(condition), n, device=device, dtype=dtype)
    a = q @ torch.diag(eigvals) @ q.mT
    b = torch.randn(n, generator=gen, device=device, dtype=dtype)
    return 0.5 * (a + a.mT), b


def make_dense_spin_matrices(
    n_spins: int,
    device: torch.device | None = None,
    dtype: torch.dtype | None = None,
    *,
    shape: tuple[int, ...] = (4, 3),
    seed: int = 0,
) -> list[torch.Tensor]:
    """Random dense matrices, one per spin channel."""
    gen = torch.Generator(device=device or "cpu").manual_seed(seed)
    return [
        torch.randn(shape, generator=gen, device=device, dtype=dtype or torch.float64)
        for _ in range(n_spins)
    ]


def make_sparse_spin_matrices(
    n_spins: int,
    device: torch.device | None = None,
    dtype: torch.dtype | None = None,
    *,
    shape: tuple[int, ...] = (4, 3),
    seed: int = 0,
) -> list[torch.Tensor]:
    """Random block-diagonal-ish sparse COO matrices, one per spin channel.

    Every matrix keeps the same sparsity pattern, mimicking the fixed block
    structure of ALMO-localized quantities.
    """
    dense = make_dense_spin_matrices(
        n_spins, device, dtype, shape=shape, seed=seed
    )
    rows = torch.arange(shape[0], device=device)[:, None]
    cols = torch.arange(shape[1], device=device)[None, :]
    mask = (rows - cols).abs() <= 1
    return [(matrix * mask).to_sparse().coalesce() for matrix in dense]


MATRIX_GENERATORS: Final[
    dict[str, Callable[..., list[torch.Tensor]]]
] = {
    "dense": make_dense_spin_matrices,
    "sparse_coo": make_sparse_spin_matrices,
}


def quadratic_gradient(variable: torch.Tensor, a: torch.Tensor) -> torch.Tensor:
    """Gradient ``A x`` of x^T A x / 2 with ``variable`` flattened, same layout."""
    x = variable.to_dense() if variable.is_sparse else variable
    grad = (a @ x.reshape(-1)).reshape(x.shape)
    return grad.to_sparse().coalesce() if variable.is_sparse else grad


def assert_history_matches_reference(
    backend: "ta.MatrixBackend",
    make_matrices: Callable[..., list[torch.Tensor]],
    device: torch.device,
    dtype: torch.dtype,
    *,
    n_spins: int = 2,
    n_store: int = 3,
    n_steps: int = 5,
    rtol: float = 1e-8,
    atol: float = 1e-10,
) -> None:
    """Assert that a backend drives the L-BFGS history to the dense reference.

    Feeds ``n_steps`` random points of a convex quadratic through a history and,
    after every step, compares each spin's direction with
    :func:`dense_lbfgs_direction` built from the last ``n_store`` pairs.

    Raises:
        AssertionError: If a direction differs beyond the tolerances
    """
    variables = [
        make_matrices(n_spins, device, dtype, seed=step) for step in range(n_steps + 1)
    ]
    a, _ = make_quadratic_problem(variables[0][0].numel(), device, dtype)
    gradients = [[quadratic_gradient(x, a) for x in point] for point in variables]

    history = ta.lbfgs_create(n_spins, n_store, backend=backend)
    ta.lbfgs_seed(history, variables[0], gradients[0])

    for step in range(1, n_steps + 1):
        directions = ta.lbfgs_get_direction(history, variables[step], gradients[step])
        first = max(1, step - n_store + 1)
        for ispin in range(n_spins):
            s_list = [
                variables[i][ispin] - variables[i - 1][ispin]
                for i in range(first, step + 1)
            ]
            y_list = [
                gradients[i][ispin] - gradients[i - 1][ispin]
                for i in range(first, step + 1)
            ]
            expected = dense_lbfgs_direction(s_list, y_list, gradients[step][ispin])
            observed = directions[ispin]
            torch.testing.assert_close(
                observed.to_dense() if observed.is_sparse else observed,
                expected,
                rtol=rtol,
                atol=atol,
            )

    ta.lbfgs_release(history)
