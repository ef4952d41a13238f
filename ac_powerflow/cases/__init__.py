"""
Bundled test networks.
"""

from .ieee39 import case39

__all__ = [
    'case39',
]
