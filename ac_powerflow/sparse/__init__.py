"""
Sparse matrix kernel: slicing, stacking and pattern-preserving element ops.
"""

from .slicing import (
    slice_columns,
    slice_block,
    slice_block_into,
)

from .stack import (
    hstack,
    vstack,
)

from .ops import (
    real_imag,
    conjugate,
    cast_real_to_complex,
)

__all__ = [
    'slice_columns',
    'slice_block',
    'slice_block_into',
    'hstack',
    'vstack',
    'real_imag',
    'conjugate',
    'cast_real_to_complex',
]
