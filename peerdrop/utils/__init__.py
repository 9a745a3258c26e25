"""Utility functions for peerdrop."""

from peerdrop.utils.logging import (
    setup_logging,
)

__all__ = [
    "setup_logging",
]
