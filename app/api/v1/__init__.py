"""
API v1 endpoints.
"""

from . import podcasts

__all__ = [
    'podcasts',
]
