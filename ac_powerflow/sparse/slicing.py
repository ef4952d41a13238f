"""
Column and block slicing of CSC matrices.

All functions expect canonical CSC input (sorted row indices inside each
column, no duplicates) and keep that ordering in their output.
"""

import numpy as np
import scipy.sparse as sp

from ..errors import InvalidRangeError, StructuralInconsistencyError


def _column_of_entries(m: sp.csc_matrix) -> np.ndarray:
    """Column index of every stored entry of a CSC matrix."""
    return np.repeat(np.arange(m.shape[1]), np.diff(m.indptr))


def _check_block(m: sp.csc_matrix, pos: tuple[int, int], shape: tuple[int, int]) -> None:
    r0, c0 = pos
    rows, cols = shape
    if r0 < 0 or c0 < 0 or rows < 0 or cols < 0:
        raise InvalidRangeError(f"Negative block position/shape: pos={pos}, shape={shape}")
    if r0 + rows > m.shape[0] or c0 + cols > m.shape[1]:
        raise InvalidRangeError(
            f"Block at {pos} with shape {shape} exceeds matrix shape {m.shape}"
        )


def slice_columns(m: sp.csc_matrix, c0: int, c1: int) -> sp.csc_matrix:
    """
    Copy columns [c0, c1) of a CSC matrix.

    Args:
        m: Source matrix in CSC format
        c0: First column (inclusive)
        c1: Last column (exclusive)

    Returns:
        New CSC matrix with m.shape[0] rows and c1 - c0 columns

    Raises:
        InvalidRangeError: if c0 >= c1 or c1 > number of columns
    """
    if c0 < 0 or c0 >= c1 or c1 > m.shape[1]:
        raise InvalidRangeError(f"Invalid column range [{c0}, {c1}) for {m.shape[1]} columns")
    start, end = m.indptr[c0], m.indptr[c1]
    indptr = m.indptr[c0:c1 + 1] - start
    return sp.csc_matrix(
        (m.data[start:end].copy(), m.indices[start:end].copy(), indptr),
        shape=(m.shape[0], c1 - c0),
    )


def _block_mask(m: sp.csc_matrix, pos: tuple[int, int], shape: tuple[int, int]) -> np.ndarray:
    """Boolean mask over m's stored entries that fall inside the block."""
    r0, c0 = pos
    rows, cols = shape
    col_of = _column_of_entries(m)
    return (
        (col_of >= c0) & (col_of < c0 + cols)
        & (m.indices >= r0) & (m.indices < r0 + rows)
    )


def slice_block(m: sp.csc_matrix, pos: tuple[int, int], shape: tuple[int, int]) -> sp.csc_matrix:
    """
    Extract the block of ``shape`` whose top-left corner is ``pos``.

    Values keep ascending row order inside each column. Empty shapes are
    allowed and yield an empty matrix.
    """
    _check_block(m, pos, shape)
    r0, c0 = pos
    rows, cols = shape
    if rows == 0 or cols == 0:
        return sp.csc_matrix((rows, cols), dtype=m.dtype)

    mask = _block_mask(m, pos, shape)
    col_of = _column_of_entries(m)[mask] - c0
    indptr = np.zeros(cols + 1, dtype=m.indptr.dtype)
    np.cumsum(np.bincount(col_of, minlength=cols), out=indptr[1:])
    return sp.csc_matrix(
        (m.data[mask], m.indices[mask] - r0, indptr),
        shape=(rows, cols),
    )


def slice_block_into(
    m: sp.csc_matrix,
    pos: tuple[int, int],
    shape: tuple[int, int],
    dest: sp.csc_matrix,
) -> sp.csc_matrix:
    """
    Refresh the values of ``dest`` from a block of ``m`` in place.

    ``dest`` must have been produced by slice_block on a matrix with the same
    sparsity pattern; only its ``data`` array is overwritten.

    Raises:
        StructuralInconsistencyError: if the block pattern no longer matches dest
    """
    _check_block(m, pos, shape)
    if dest.shape != tuple(shape):
        raise StructuralInconsistencyError(
            f"Destination shape {dest.shape} does not match block shape {shape}"
        )
    if shape[0] == 0 or shape[1] == 0:
        return dest

    mask = _block_mask(m, pos, shape)
    values = m.data[mask]
    if values.shape[0] != dest.data.shape[0]:
        raise StructuralInconsistencyError(
            f"Block has {values.shape[0]} entries, destination expects {dest.data.shape[0]}"
        )
    dest.data[:] = values
    return dest
