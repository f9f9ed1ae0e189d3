import pytest
import torch

from tests.conftest import DEVICE, DTYPE
from torch_almo.testing import (
    MATRIX_GENERATORS,
    RecordingBackend,
    assert_history_matches_reference,
    dense_inverse_hessian,
    dense_lbfgs_direction,
    make_quadratic_problem,
    make_sparse_spin_matrices,
)


def test_quadratic_problem_is_spd() -> None:
    a, b = make_quadratic_problem(6, DEVICE, DTYPE, seed=1, condition=20.0)
    torch.testing.assert_close(a, a.mT)
    eigvals = torch.linalg.eigvalsh(a)
    assert eigvals.min() > 1.0 - 1e-10
    assert eigvals.max() < 20.0 + 1e-10
    assert b.shape == (6,)


def test_quadratic_problem_is_reproducible() -> None:
    a1, b1 = make_quadratic_problem(4, DEVICE, DTYPE, seed=7)
    a2, b2 = make_quadratic_problem(4, DEVICE, DTYPE, seed=7)
    torch.testing.assert_close(a1, a2)
    torch.testing.assert_close(b1, b2)


def test_inverse_hessian_satisfies_secant(quadratic_2x2: torch.Tensor) -> None:
    """H y = s for the newest pair, and H is symmetric."""
    s_list = [
        torch.tensor([1.0, 0.0], dtype=DTYPE),
        torch.tensor([0.1, -0.3], dtype=DTYPE),
    ]
    y_list = [quadratic_2x2 @ s for s in s_list]
    hess_inv = dense_inverse_hessian(s_list, y_list)
    torch.testing.assert_close(hess_inv, hess_inv.mT)
    torch.testing.assert_close(hess_inv @ y_list[-1], s_list[-1])
    # two A-conjugate pairs on a 2D quadratic recover the exact inverse
    torch.testing.assert_close(hess_inv, torch.linalg.inv(quadratic_2x2))


def test_direction_keeps_gradient_shape(quadratic_2x2: torch.Tensor) -> None:
    s = torch.tensor([[0.2], [0.1]], dtype=DTYPE)
    y = (quadratic_2x2 @ s.reshape(-1)).reshape(s.shape)
    direction = dense_lbfgs_direction([s], [y], y)
    assert direction.shape == (2, 1)
    torch.testing.assert_close(direction, -s)


def test_inverse_hessian_needs_pairs() -> None:
    with pytest.raises(ValueError, match="non-zero number"):
        dense_inverse_hessian([], [])


def test_sparse_generator_pattern() -> None:
    matrices = make_sparse_spin_matrices(3, DEVICE, DTYPE, shape=(5, 5), seed=2)
    assert len(matrices) == 3
    patterns = {tuple(map(tuple, m.indices().T.tolist())) for m in matrices}
    assert len(patterns) == 1
    assert all(abs(i - j) <= 1 for i, j in next(iter(patterns)))


def test_recording_backend_rejects_foreign_release() -> None:
    backend = RecordingBackend()
    with pytest.raises(AssertionError, match="not owned"):
        backend.release(torch.zeros(2, dtype=DTYPE))


def test_recording_backend_follows_sparse_rebinding() -> None:
    backend = RecordingBackend()
    template = make_sparse_spin_matrices(1, DEVICE, DTYPE)[0]
    matrix = backend.create(template)
    matrix = backend.copy(matrix, template)
    matrix = backend.axpy(matrix, template, 2.0, 1.0)
    assert list(backend.live.values()) == [matrix]
    backend.release(matrix)
    assert backend.live == {}
    assert (backend.n_created, backend.n_released) == (1, 1)


@pytest.mark.parametrize("generator_name", MATRIX_GENERATORS)
def test_recording_backend_matches_reference(generator_name: str) -> None:
    backend = RecordingBackend()
    assert_history_matches_reference(
        backend, MATRIX_GENERATORS[generator_name], DEVICE, DTYPE, n_spins=1
    )
    # every history slot was handed back
    assert backend.n_released == 2 * 3
