"""
Utility modules for the clinic core backend.

This package contains shared helpers used across the application:
timezone handling, pagination and lab report file storage.
"""

from utils.query_helpers import paginate, pagination_meta

__all__ = ['paginate', 'pagination_meta']
