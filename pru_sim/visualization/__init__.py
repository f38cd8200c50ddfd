"""
Visualization module for the PRU sandbox.

Provides matplotlib time series of tick diagnostics:
- Energy components and drift
- Average density
- Archetype counts
"""

from .timeseries_viz import (
    plot_timeseries,
    plot_multiple_timeseries,
    plot_energy_summary,
    energy_series,
)

__all__ = [
    'plot_timeseries',
    'plot_multiple_timeseries',
    'plot_energy_summary',
    'energy_series',
]
