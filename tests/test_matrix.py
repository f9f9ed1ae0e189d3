import numpy as np
import pytest
import torch
from numpy.testing import assert_allclose

from tests.conftest import DEVICE, DTYPE
from torch_almo.matrix import MatrixBackend, TorchMatrixBackend


@pytest.fixture
def backend() -> TorchMatrixBackend:
    return TorchMatrixBackend()


@pytest.fixture
def dense_pair() -> tuple[torch.Tensor, torch.Tensor]:
    a = torch.tensor([[1.0, 0.0, 2.0], [0.0, -3.0, 0.0]], device=DEVICE, dtype=DTYPE)
    b = torch.tensor([[0.5, 4.0, 0.0], [1.0, 2.0, 0.0]], device=DEVICE, dtype=DTYPE)
    return a, b


def test_backend_satisfies_protocol(backend: TorchMatrixBackend) -> None:
    assert isinstance(backend, MatrixBackend)


def test_create_dense(backend: TorchMatrixBackend, dense_pair: tuple) -> None:
    a, _ = dense_pair
    created = backend.create(a)
    assert created.shape == a.shape
    assert created.dtype == a.dtype
    assert not created.is_sparse
    assert torch.count_nonzero(created) == 0
    assert created.data_ptr() != a.data_ptr()


def test_create_sparse(backend: TorchMatrixBackend, dense_pair: tuple) -> None:
    a = dense_pair[0].to_sparse()
    created = backend.create(a)
    assert created.is_sparse
    assert created.shape == a.shape
    assert created.dtype == a.dtype
    assert created._nnz() == 0  # noqa: SLF001


def test_copy_dense_overwrites_in_place(
    backend: TorchMatrixBackend, dense_pair: tuple
) -> None:
    a, b = dense_pair
    dst = backend.create(a)
    out = backend.copy(dst, b)
    assert out is dst
    torch.testing.assert_close(out, b)
    assert out.data_ptr() != b.data_ptr()


def test_copy_sparse(backend: TorchMatrixBackend, dense_pair: tuple) -> None:
    a, b = (m.to_sparse() for m in dense_pair)
    out = backend.copy(backend.create(a), b)
    assert out.is_sparse
    torch.testing.assert_close(out.to_dense(), dense_pair[1])


@pytest.mark.parametrize("sparse", [False, True])
def test_axpy(backend: TorchMatrixBackend, dense_pair: tuple, *, sparse: bool) -> None:
    a, b = dense_pair
    expected = -1.0 * a + 2.5 * b
    dst, src = (a.clone().to_sparse(), b.to_sparse()) if sparse else (a.clone(), b)
    out = backend.axpy(dst, src, -1.0, 2.5)
    assert out.is_sparse == sparse
    torch.testing.assert_close(out.to_dense() if sparse else out, expected)


def test_axpy_dense_keeps_storage(backend: TorchMatrixBackend, dense_pair: tuple) -> None:
    a, b = dense_pair
    dst = a.clone()
    assert backend.axpy(dst, b, 1.0, 1.0) is dst


@pytest.mark.parametrize("sparse", [False, True])
def test_scale(backend: TorchMatrixBackend, dense_pair: tuple, *, sparse: bool) -> None:
    a, _ = dense_pair
    dst = a.clone().to_sparse() if sparse else a.clone()
    out = backend.scale(dst, -0.5)
    torch.testing.assert_close(out.to_dense() if sparse else out, -0.5 * a)


@pytest.mark.parametrize("sparse", [False, True])
def test_dot(backend: TorchMatrixBackend, dense_pair: tuple, *, sparse: bool) -> None:
    a, b = dense_pair
    expected = float(np.sum(a.numpy() * b.numpy()))
    if sparse:
        a, b = a.to_sparse(), b.to_sparse()
    result = backend.dot(a, b)
    assert isinstance(result, float)
    assert_allclose(result, expected)


def test_dot_sparse_disjoint_patterns(backend: TorchMatrixBackend) -> None:
    a = torch.tensor([[1.0, 0.0], [0.0, 0.0]], dtype=DTYPE).to_sparse()
    b = torch.tensor([[0.0, 0.0], [0.0, 1.0]], dtype=DTYPE).to_sparse()
    assert backend.dot(a, b) == 0.0


def test_shape_mismatch(backend: TorchMatrixBackend) -> None:
    a = torch.zeros((2, 3), dtype=DTYPE)
    b = torch.zeros((3, 2), dtype=DTYPE)
    with pytest.raises(ValueError, match="shapes differ"):
        backend.dot(a, b)
    with pytest.raises(ValueError, match="shapes differ"):
        backend.axpy(a, b, 1.0, 1.0)


def test_layout_mismatch(backend: TorchMatrixBackend, dense_pair: tuple) -> None:
    a, b = dense_pair
    with pytest.raises(ValueError, match="layouts differ"):
        backend.copy(a, b.to_sparse())


def test_unsupported_inputs(backend: TorchMatrixBackend, dense_pair: tuple) -> None:
    a, _ = dense_pair
    with pytest.raises(TypeError, match="Unsupported layout"):
        backend.create(a.to_sparse_csr())
    with pytest.raises(TypeError, match="torch.Tensor"):
        backend.create(a.numpy())


def test_release_is_noop(backend: TorchMatrixBackend, dense_pair: tuple) -> None:
    a, _ = dense_pair
    backend.release(a)
    torch.testing.assert_close(a, dense_pair[0])


def test_check_matches_operation_errors(
    backend: TorchMatrixBackend, dense_pair: tuple
) -> None:
    a, b = dense_pair
    backend.check(a, b)
    backend.check(a.to_sparse(), b.to_sparse())
    with pytest.raises(ValueError, match="shapes differ"):
        backend.check(a, torch.zeros((7, 1), dtype=DTYPE))
    with pytest.raises(ValueError, match="layouts differ"):
        backend.check(a, b.to_sparse())
    with pytest.raises(TypeError, match="torch.Tensor"):
        backend.check(a, b.numpy())
    torch.testing.assert_close(a, dense_pair[0])
