"""
Sparse LU backends used to solve the Newton-Raphson correction step.

Every backend offers ``factor_and_solve(A, b)`` (one LU factorization plus one
triangular solve) and ``reset()``. Backends differ only in how much of the
symbolic phase they reuse between calls; numeric results agree.
"""

import logging
from abc import ABC, abstractmethod

import numpy as np
import scipy.sparse as sp
from scipy.sparse.csgraph import reverse_cuthill_mckee
from scipy.sparse.linalg import splu

from ..config import SolverKind
from ..errors import BackendFailureError, SingularJacobianError

logger = logging.getLogger(__name__)


def _factorize(a: sp.csc_matrix, permc_spec: str):
    """Run splu and translate its failures into power flow errors."""
    try:
        return splu(a, permc_spec=permc_spec)
    except RuntimeError as e:
        if "singular" in str(e).lower():
            raise SingularJacobianError(f"LU factorization failed: {e}") from e
        raise BackendFailureError(f"LU factorization failed: {e}") from e
    except (ValueError, MemoryError) as e:
        raise BackendFailureError(f"LU factorization failed: {e}") from e


def _check_system(a: sp.csc_matrix, b: np.ndarray) -> None:
    if a.shape[0] != a.shape[1]:
        raise BackendFailureError(f"Matrix must be square, got shape {a.shape}")
    if b.shape[0] != a.shape[0]:
        raise BackendFailureError(
            f"Right-hand side has {b.shape[0]} entries, matrix has {a.shape[0]} rows"
        )


def _check_solution(x: np.ndarray) -> np.ndarray:
    if not np.all(np.isfinite(x)):
        raise SingularJacobianError("LU solve produced non-finite values")
    return x


class LUSolver(ABC):
    """Abstract sparse LU backend."""

    @abstractmethod
    def factor_and_solve(self, a: sp.csc_matrix, b: np.ndarray) -> np.ndarray:
        """
        Factorize ``a`` and solve ``a x = b``.

        Args:
            a: Square real matrix in CSC format
            b: Right-hand side vector

        Returns:
            Solution vector x

        Raises:
            SingularJacobianError: if a zero pivot is encountered
            BackendFailureError: for any other backend failure
        """

    @abstractmethod
    def reset(self) -> None:
        """Forget any cached symbolic information."""

    def solve(self, a: sp.csc_matrix, b: np.ndarray) -> np.ndarray:
        """Alias of factor_and_solve."""
        return self.factor_and_solve(a, b)


class SpluSolver(LUSolver):
    """Refactorizes from scratch on every call (COLAMD ordering each time)."""

    def __init__(self, permc_spec: str = "COLAMD"):
        self.permc_spec = permc_spec
        self.n_factorizations = 0

    def factor_and_solve(self, a: sp.csc_matrix, b: np.ndarray) -> np.ndarray:
        a = sp.csc_matrix(a)
        b = np.asarray(b, dtype=float)
        _check_system(a, b)
        lu = _factorize(a, self.permc_spec)
        self.n_factorizations += 1
        return _check_solution(lu.solve(b))

    def reset(self) -> None:
        self.n_factorizations = 0


class CachedOrderingSolver(LUSolver):
    """
    Computes a fill-reducing ordering once per sparsity pattern.

    The first call derives a reverse Cuthill-McKee ordering of A + A^T and
    stores it together with the pattern. Later calls with the same pattern
    apply the stored permutation and only redo the numeric factorization
    (NATURAL column ordering inside splu). A pattern change resets the cache.
    """

    def __init__(self):
        self._indptr: np.ndarray | None = None
        self._indices: np.ndarray | None = None
        self._perm: np.ndarray | None = None
        self.n_symbolic = 0
        self.n_factorizations = 0

    def _same_pattern(self, a: sp.csc_matrix) -> bool:
        return (
            self._perm is not None
            and self._indptr.shape == a.indptr.shape
            and self._indices.shape == a.indices.shape
            and np.array_equal(self._indptr, a.indptr)
            and np.array_equal(self._indices, a.indices)
        )

    def _analyze(self, a: sp.csc_matrix) -> None:
        pattern = abs(a) + abs(a.T)
        self._perm = np.asarray(
            reverse_cuthill_mckee(sp.csr_matrix(pattern), symmetric_mode=True),
            dtype=np.int64,
        )
        self._indptr = a.indptr.copy()
        self._indices = a.indices.copy()
        self.n_symbolic += 1
        logger.debug(f"Computed column ordering for {a.shape[0]}x{a.shape[1]} pattern "
                     f"with {a.nnz} entries")

    def factor_and_solve(self, a: sp.csc_matrix, b: np.ndarray) -> np.ndarray:
        a = sp.csc_matrix(a)
        a.sort_indices()
        b = np.asarray(b, dtype=float)
        _check_system(a, b)
        if not self._same_pattern(a):
            if self._perm is not None:
                logger.debug("Sparsity pattern changed, recomputing ordering")
            self._analyze(a)

        perm = self._perm
        a_perm = sp.csc_matrix(a[perm, :][:, perm])
        lu = _factorize(a_perm, "NATURAL")
        self.n_factorizations += 1

        y = lu.solve(b[perm])
        x = np.empty_like(y)
        x[perm] = y
        return _check_solution(x)

    def reset(self) -> None:
        self._indptr = None
        self._indices = None
        self._perm = None


def make_solver(kind: SolverKind | str = SolverKind.CACHED) -> LUSolver:
    """Create the LU backend named by ``kind``."""
    kind = SolverKind(kind)
    if kind is SolverKind.SPLU:
        return SpluSolver()
    return CachedOrderingSolver()
