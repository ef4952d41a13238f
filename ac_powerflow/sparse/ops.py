"""
Element-wise operations on CSC matrices that keep the sparsity pattern.
"""

import numpy as np
import scipy.sparse as sp


def real_imag(m: sp.csc_matrix) -> tuple[sp.csc_matrix, sp.csc_matrix]:
    """Split a complex CSC matrix into real and imaginary parts with identical patterns."""
    re = sp.csc_matrix((m.data.real.copy(), m.indices.copy(), m.indptr.copy()), shape=m.shape)
    im = sp.csc_matrix((m.data.imag.copy(), m.indices.copy(), m.indptr.copy()), shape=m.shape)
    return re, im


def conjugate(m: sp.csc_matrix, inplace: bool = False) -> sp.csc_matrix:
    """Complex conjugate of a CSC matrix, either as a copy or in place."""
    if inplace:
        np.conjugate(m.data, out=m.data)
        return m
    return sp.csc_matrix(
        (np.conjugate(m.data), m.indices.copy(), m.indptr.copy()),
        shape=m.shape,
    )


def cast_real_to_complex(m: sp.csc_matrix) -> sp.csc_matrix:
    """Lift a real CSC matrix to complex with zero imaginary part."""
    return sp.csc_matrix(
        (m.data.astype(np.complex128), m.indices.copy(), m.indptr.copy()),
        shape=m.shape,
    )
