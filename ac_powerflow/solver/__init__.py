"""
Sparse LU backends.
"""

from .backends import (
    LUSolver,
    SpluSolver,
    CachedOrderingSolver,
    make_solver,
)

__all__ = [
    'LUSolver',
    'SpluSolver',
    'CachedOrderingSolver',
    'make_solver',
]
