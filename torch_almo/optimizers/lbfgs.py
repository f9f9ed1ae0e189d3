"""L-BFGS (Limited-memory BFGS) history for ALMO SCF optimization.

This module keeps a bounded, circular history of variable/gradient pairs, one
matrix per spin channel, and turns it into a search direction with the two-loop
recursion of Nocedal. The inverse Hessian is never formed, only its action on
the current gradient.

Usage follows a fixed protocol::

    history = lbfgs_create(n_spins, n_store)
    lbfgs_seed(history, variable, gradient)
    while not converged:
        direction = lbfgs_get_direction(history, variable, gradient)
        variable, gradient = take_step(variable, direction)
    lbfgs_release(history)

``lbfgs_get_direction`` stores ``variable - previous`` and ``gradient - previous``
in the slot holding the previous point, computes rho for that slot, runs the
recursion and finally seeds the next slot with the new point. The two push
counters (one per track) are shared by all spin channels and advance only on
delta pushes, so slot addresses grow without bound and wrap modulo ``n_store``.

Shape notation:
    S = number of spin channels (n_spins)
    K = history length (n_store)
    m = number of usable history terms, min(push_count, K)
"""

import logging
from dataclasses import dataclass, field
from typing import Any

import torch

from torch_almo._duecredit import dcite
from torch_almo.exceptions import InvalidArgumentError, ProtocolViolationError
from torch_almo.matrix import MatrixBackend, TorchMatrixBackend
from torch_almo.typing import HistoryStatus, SpinMatrices, Track


logger = logging.getLogger(__name__)


def _slot_index(counter: int, n_store: int) -> int:
    """Map a logical push counter onto a 0-based storage slot.

    Counter 1 is the first slot. Shared by every push and by both loops of the
    recursion.
    """
    return (counter - 1) % n_store


@dataclass
class LBFGSHistory:
    """Circular variable/gradient history for limited-memory BFGS.

    Attributes:
        n_store (int): Number of stored (variable delta, gradient delta, rho)
            triples per spin channel, at least 1
        push_count (list[int]): Number of delta pushes per track, indexed by
            :class:`Track`. Shared across spin channels.
        slots (list): Stored matrices, ``slots[spin][slot][track]``. ``None``
            marks a slot that was never written.
        rho (torch.Tensor): Curvature scalars 1 / <s, y> with shape [S, K]
        backend (MatrixBackend): Matrix operations used on stored matrices
        curvature_eps (float): Pairs with |<s, y>| at or below this value are
            treated as degenerate
        status (HistoryStatus): Lifecycle stage of the history
    """

    n_store: int
    push_count: list[int]
    slots: list[list[list[Any]]]
    rho: torch.Tensor
    backend: MatrixBackend = field(default_factory=TorchMatrixBackend)
    curvature_eps: float = 0.0
    status: HistoryStatus = HistoryStatus.created

    @property
    def n_spins(self) -> int:
        """Number of spin channels."""
        return len(self.slots)

    @property
    def n_terms(self) -> int:
        """Number of history pairs the next recursion can use."""
        return min(self.push_count[Track.variable], self.n_store)

    def slot_index(self, counter: int) -> int:
        """Storage slot of logical push ``counter``."""
        return _slot_index(counter, self.n_store)


def lbfgs_create(
    n_spins: int,
    n_store: int,
    *,
    backend: MatrixBackend | None = None,
    curvature_eps: float = 0.0,
) -> LBFGSHistory:
    """Create an empty L-BFGS history.

    Args:
        n_spins: Number of spin channels, at least 1
        n_store: Requested history length. Values below 1 are raised to 1.
        backend: Matrix operations for the stored matrices. Defaults to
            :class:`TorchMatrixBackend`.
        curvature_eps: Non-negative threshold below which |<s, y>| marks a
            pair as degenerate

    Returns:
        LBFGSHistory with no populated slots and both counters at zero

    Raises:
        InvalidArgumentError: If ``n_spins`` is not a positive integer or
            ``curvature_eps`` is negative
    """
    if isinstance(n_spins, bool) or not isinstance(n_spins, int) or n_spins < 1:
        raise InvalidArgumentError(
            f"n_spins must be a positive integer, got {n_spins!r}"
        )
    if isinstance(n_store, bool) or not isinstance(n_store, int):
        raise InvalidArgumentError(f"n_store must be an integer, got {n_store!r}")
    if curvature_eps < 0:
        raise InvalidArgumentError(f"curvature_eps must be >= 0, got {curvature_eps}")

    n_allocate = max(1, n_store)
    return LBFGSHistory(
        n_store=n_allocate,
        push_count=[0, 0],
        slots=[
            [[None, None] for _ in range(n_allocate)] for _ in range(n_spins)
        ],
        rho=torch.zeros((n_spins, n_allocate), dtype=torch.float64),
        backend=backend if backend is not None else TorchMatrixBackend(),
        curvature_eps=float(curvature_eps),
    )


def _check_spin_count(history: LBFGSHistory, matrices: SpinMatrices, name: str) -> None:
    if len(matrices) != history.n_spins:
        raise InvalidArgumentError(
            f"Expected {history.n_spins} {name} matrices (one per spin), "
            f"got {len(matrices)}"
        )


def _seed_slot(history: LBFGSHistory, matrices: SpinMatrices, track: Track) -> None:
    """Copy ``matrices`` into the slot after the current one.

    The counter is advanced only to address the slot and is restored afterwards,
    so the next delta push lands on the slot seeded here.
    """
    counter = history.push_count[track] + 1
    slot = history.slot_index(counter)
    for ispin, matrix in enumerate(matrices):
        cell = history.slots[ispin][slot]
        if counter <= history.n_store and cell[track] is None:
            cell[track] = history.backend.create(matrix)
        cell[track] = history.backend.copy(cell[track], matrix)
    logger.debug("Seeded %s in cell %d", track.name, slot)


def _delta_slot(history: LBFGSHistory, matrices: SpinMatrices, track: Track) -> None:
    """Replace the seeded point in the current slot by ``new - seeded``."""
    slot = history.slot_index(history.push_count[track] + 1)
    for ispin, matrix in enumerate(matrices):
        cell = history.slots[ispin][slot]
        cell[track] = history.backend.axpy(cell[track], matrix, -1.0, 1.0)
    history.push_count[track] += 1
    logger.debug("Stored %s delta in cell %d", track.name, slot)


def _check_against_seed(
    history: LBFGSHistory, matrices: SpinMatrices, track: Track
) -> None:
    """Let the backend reject inputs that cannot be combined with the seed."""
    slot = history.slot_index(history.push_count[track] + 1)
    for ispin, matrix in enumerate(matrices):
        history.backend.check(history.slots[ispin][slot][track], matrix)


def _check_counters(history: LBFGSHistory) -> None:
    n_var, n_grad = history.push_count
    if n_var != n_grad:
        raise ProtocolViolationError(
            "L-BFGS variable and gradient histories are out of step: "
            f"{n_var} variable pushes vs {n_grad} gradient pushes"
        )


def _last_rho(history: LBFGSHistory) -> None:
    """Compute rho = 1 / <s, y> for the most recently completed slot."""
    _check_counters(history)
    slot = history.slot_index(history.push_count[Track.variable])
    for ispin in range(history.n_spins):
        s_k, y_k = history.slots[ispin][slot]
        sy = history.backend.dot(s_k, y_k)
        if abs(sy) <= history.curvature_eps:
            logger.warning(
                "Degenerate curvature <s, y> = %g in cell %d (spin %d), "
                "pair ignored by the recursion",
                sy,
                slot,
                ispin,
            )
            history.rho[ispin, slot] = 0.0
        else:
            history.rho[ispin, slot] = 1.0 / sy
        logger.debug("Rho in cell %d is %g", slot, history.rho[ispin, slot].item())


def _two_loop_direction(
    history: LBFGSHistory, gradient: SpinMatrices
) -> list[Any]:
    """Two-loop recursion giving d = -H_k g_k for every spin channel."""
    _check_counters(history)
    backend = history.backend
    n_terms = history.n_terms  # m
    count = history.push_count[Track.variable]
    logger.debug("L-BFGS terms used: %d", n_terms)

    directions = []
    for ispin, grad in enumerate(gradient):
        spin_slots = history.slots[ispin]
        rho = history.rho[ispin]  # [K]
        q = backend.copy(backend.create(grad), grad)
        alphas = [0.0] * n_terms
        gamma = 1.0

        # First loop (from newest to oldest)
        for iterm in range(1, n_terms + 1):
            slot = history.slot_index(count - iterm + 1)
            s_i, y_i = spin_slots[slot]
            rho_i = rho[slot].item()
            alphas[iterm - 1] = rho_i * backend.dot(s_i, q)
            q = backend.axpy(q, y_i, 1.0, -alphas[iterm - 1])

            # gamma_k = <s, y> / <y, y> of the newest pair, Nocedal (7.20)
            if iterm == 1:
                yy = backend.dot(y_i, y_i)
                if rho_i != 0.0 and yy != 0.0:
                    gamma = 1.0 / (rho_i * yy)
                logger.debug("Gamma_k: %g", gamma)

        # q now holds r = H0 q with H0 = gamma_k I
        q = backend.scale(q, gamma)

        # Second loop (from oldest to newest)
        for iterm in range(n_terms, 0, -1):
            slot = history.slot_index(count - iterm + 1)
            s_i, y_i = spin_slots[slot]
            beta = rho[slot].item() * backend.dot(y_i, q)
            q = backend.axpy(q, s_i, 1.0, alphas[iterm - 1] - beta)

        # NOTE: sign convention carried over as-is, q ~ H^-1 g so -q descends
        directions.append(backend.scale(q, -1.0))

    return directions


def lbfgs_seed(
    history: LBFGSHistory, variable: SpinMatrices, gradient: SpinMatrices
) -> None:
    """Store the first variable/gradient pair.

    Args:
        history: History in the ``created`` state
        variable: Current variable, one matrix per spin
        gradient: Gradient at ``variable``, one matrix per spin

    Raises:
        ProtocolViolationError: If the history was already seeded or released
        InvalidArgumentError: If the number of matrices differs from n_spins
    """
    if history.status is not HistoryStatus.created:
        raise ProtocolViolationError(
            f"L-BFGS history can only be seeded once, it is {history.status}"
        )
    _check_spin_count(history, variable, "variable")
    _check_spin_count(history, gradient, "gradient")

    _seed_slot(history, variable, Track.variable)
    _seed_slot(history, gradient, Track.gradient)
    history.status = HistoryStatus.seeded


@dcite("10.1090/S0025-5718-1980-0572855-7", description="L-BFGS two-loop recursion")
def lbfgs_get_direction(
    history: LBFGSHistory, variable: SpinMatrices, gradient: SpinMatrices
) -> list[Any]:
    r"""Record a new variable/gradient pair and predict the search direction.

    Stores $s = x_{k+1} - x_k$ and $y = g_{k+1} - g_k$ in the slot holding the
    previous point, computes its rho, runs the two-loop recursion and seeds the
    next slot with ``variable`` and ``gradient``.

    Args:
        history: Seeded history. Mutated in place.
        variable: New variable, one matrix per spin. Not modified.
        gradient: Gradient at ``variable``, one matrix per spin. Not modified.

    Returns:
        list: Search direction $-H_k g_k$, one matrix per spin. Each matrix was
        allocated with ``history.backend.create`` and belongs to the caller,
        who must hand it to ``history.backend.release`` when the backend
        pools its matrices.

    Raises:
        ProtocolViolationError: If the history is not seeded or its variable and
            gradient counters differ
        InvalidArgumentError: If the number of matrices differs from n_spins
        ValueError: If the backend finds a matrix incompatible with the seeded
            point. Every check runs before the history is mutated.

    Notes:
        - The returned direction is the negated recursion result, the usual
          descent convention.
        - Calling twice with identical inputs is not idempotent: the second
          call sees a zero delta against the point seeded by the first.
    """
    if history.status is not HistoryStatus.seeded:
        raise ProtocolViolationError(
            f"L-BFGS history must be seeded before use, it is {history.status}"
        )
    _check_counters(history)
    _check_spin_count(history, variable, "variable")
    _check_spin_count(history, gradient, "gradient")
    _check_against_seed(history, variable, Track.variable)
    _check_against_seed(history, gradient, Track.gradient)

    _delta_slot(history, variable, Track.variable)
    _delta_slot(history, gradient, Track.gradient)
    _last_rho(history)

    directions = _two_loop_direction(history, gradient)

    _seed_slot(history, variable, Track.variable)
    _seed_slot(history, gradient, Track.gradient)

    return directions


def lbfgs_release(history: LBFGSHistory) -> None:
    """Release every stored matrix and drop the history storage.

    Only slots that were actually written are released. Releasing an already
    released history does nothing.
    """
    if history.status is HistoryStatus.released:
        return

    for spin_slots in history.slots:
        for track in Track:
            n_used = min(history.push_count[track] + 1, history.n_store)
            for slot in range(n_used):
                matrix = spin_slots[slot][track]
                if matrix is not None:
                    history.backend.release(matrix)
                    spin_slots[slot][track] = None

    history.slots = []
    history.rho = torch.zeros((0, history.n_store), dtype=torch.float64)
    history.status = HistoryStatus.released
