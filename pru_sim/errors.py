"""
Exception types shared by the PRU sandbox.
"""

from __future__ import annotations


class ConfigurationError(ValueError):
    """Invalid configuration value. The previous valid state is left untouched."""


class IndexOutOfBounds(IndexError):
    """Lattice access outside the fixed index set."""

    def __init__(self, index, bounds):
        self.index = index
        self.bounds = bounds
        super().__init__(f"Index {index} out of bounds for lattice {bounds}")
