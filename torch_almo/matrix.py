"""Matrix arithmetic consumed by the L-BFGS history.

The history never touches matrix elements directly. Everything it needs is the
small set of operations in :class:`MatrixBackend`: allocate a matrix with the
layout of a template, overwrite, scaled addition, scaling, the Frobenius inner
product, a compatibility check and release. :class:`TorchMatrixBackend`
provides them for strided and sparse COO ``torch.Tensor`` objects.

Every operation returns the matrix that now holds the result. Callers must
rebind to the returned object, which lets backends for immutable values (or
layouts that cannot be updated in place) work unchanged.
"""

from typing import Any, Protocol, runtime_checkable

import torch


@runtime_checkable
class MatrixBackend(Protocol):
    """Matrix operations required by :mod:`torch_almo.optimizers.lbfgs`."""

    def create(self, template: Any) -> Any:
        """Allocate a zero matrix with the layout of ``template``."""
        ...

    def copy(self, dst: Any, src: Any) -> Any:
        """Overwrite ``dst`` with the values of ``src``."""
        ...

    def axpy(self, dst: Any, src: Any, scale_dst: float, scale_src: float) -> Any:
        """Compute ``scale_dst * dst + scale_src * src`` into ``dst``."""
        ...

    def scale(self, dst: Any, factor: float) -> Any:
        """Multiply ``dst`` by ``factor``."""
        ...

    def dot(self, a: Any, b: Any) -> float:
        """Frobenius inner product of ``a`` and ``b``."""
        ...

    def check(self, dst: Any, src: Any) -> None:
        """Raise if ``src`` cannot be copied or added into ``dst``."""
        ...

    def release(self, matrix: Any) -> None:
        """Give back a matrix obtained from :meth:`create`."""
        ...


_SUPPORTED_LAYOUTS = (torch.strided, torch.sparse_coo)


def _check_layout(matrix: torch.Tensor) -> None:
    if not isinstance(matrix, torch.Tensor):
        raise TypeError(f"Expected a torch.Tensor, got {type(matrix)}")
    if matrix.layout not in _SUPPORTED_LAYOUTS:
        raise TypeError(f"Unsupported layout {matrix.layout}")


def _check_compatible(a: torch.Tensor, b: torch.Tensor) -> None:
    _check_layout(a)
    _check_layout(b)
    if a.shape != b.shape:
        raise ValueError(f"Matrix shapes differ: {tuple(a.shape)} vs {tuple(b.shape)}")
    if a.layout != b.layout:
        raise ValueError(f"Matrix layouts differ: {a.layout} vs {b.layout}")


class TorchMatrixBackend:
    """Matrix backend over dense and sparse COO torch tensors.

    Dense matrices are updated in place, so a history slot keeps the storage
    it was created with. Sparse COO results are new coalesced tensors since
    their sparsity pattern can change under addition.

    Examples:
        >>> backend = TorchMatrixBackend()
        >>> a = torch.tensor([[1.0, 2.0]])
        >>> b = backend.copy(backend.create(a), a)
        >>> backend.dot(a, backend.axpy(b, a, 1.0, 1.0))
        10.0
    """

    def create(self, template: torch.Tensor) -> torch.Tensor:
        """Allocate a zero matrix with the shape, dtype and device of ``template``.

        Sparse templates give an empty sparse COO tensor with the same sparse
        and dense dimensions.
        """
        _check_layout(template)
        if template.is_sparse:
            n_sparse = template.sparse_dim()
            indices = torch.empty(
                (n_sparse, 0), dtype=torch.long, device=template.device
            )
            values = torch.empty(
                (0, *template.shape[n_sparse:]),
                dtype=template.dtype,
                device=template.device,
            )
            return torch.sparse_coo_tensor(indices, values, template.shape).coalesce()
        return torch.zeros_like(template)

    def copy(self, dst: torch.Tensor, src: torch.Tensor) -> torch.Tensor:
        """Overwrite ``dst`` with ``src``."""
        _check_compatible(dst, src)
        if dst.is_sparse:
            return src.detach().coalesce().clone()
        return dst.copy_(src.detach())

    def axpy(
        self,
        dst: torch.Tensor,
        src: torch.Tensor,
        scale_dst: float,
        scale_src: float,
    ) -> torch.Tensor:
        """Compute ``scale_dst * dst + scale_src * src``."""
        _check_compatible(dst, src)
        if dst.is_sparse:
            return (scale_dst * dst + scale_src * src.detach()).coalesce()
        return dst.mul_(scale_dst).add_(src.detach(), alpha=scale_src)

    def scale(self, dst: torch.Tensor, factor: float) -> torch.Tensor:
        """Multiply ``dst`` by ``factor``."""
        _check_layout(dst)
        if dst.is_sparse:
            return (dst * factor).coalesce()
        return dst.mul_(factor)

    def dot(self, a: torch.Tensor, b: torch.Tensor) -> float:
        """Frobenius inner product ``sum(a * b)``."""
        _check_compatible(a, b)
        if a.is_sparse:
            return float(torch.sparse.sum(a.coalesce() * b.coalesce()))
        return float(torch.sum(a * b))

    def check(self, dst: torch.Tensor, src: torch.Tensor) -> None:
        """Raise ``ValueError`` or ``TypeError`` unless shapes and layouts agree."""
        _check_compatible(dst, src)

    def release(self, matrix: torch.Tensor) -> None:
        """Nothing to free, torch tensors are reference counted."""
        _check_layout(matrix)
