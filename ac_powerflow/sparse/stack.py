"""
Horizontal and vertical concatenation of CSC matrices.

Thin wrappers over ``scipy.sparse.hstack``/``vstack`` that check block
shapes up front and always return CSC.
"""

import scipy.sparse as sp

from ..errors import StructuralInconsistencyError


def hstack(blocks: list[sp.csc_matrix]) -> sp.csc_matrix:
    """
    Concatenate CSC matrices column-wise.

    All inputs must have the same number of rows.
    """
    if not blocks:
        raise StructuralInconsistencyError("hstack needs at least one block")
    n_rows = blocks[0].shape[0]
    for b in blocks:
        if b.shape[0] != n_rows:
            raise StructuralInconsistencyError(
                f"hstack row mismatch: {b.shape[0]} != {n_rows}"
            )
    return sp.csc_matrix(sp.hstack(blocks, format="csc"))


def vstack(blocks: list[sp.csc_matrix]) -> sp.csc_matrix:
    """
    Concatenate CSC matrices row-wise.

    All inputs must have the same number of columns.
    """
    if not blocks:
        raise StructuralInconsistencyError("vstack needs at least one block")
    n_cols = blocks[0].shape[1]
    for b in blocks:
        if b.shape[1] != n_cols:
            raise StructuralInconsistencyError(
                f"vstack column mismatch: {b.shape[1]} != {n_cols}"
            )
    return sp.csc_matrix(sp.vstack(blocks, format="csc"))
