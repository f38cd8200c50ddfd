"""
Time series visualization of tick diagnostics.
"""

from __future__ import annotations
from typing import Any, Dict, Optional, Sequence, Tuple
import numpy as np

_plt = None
def _get_plt():
    global _plt
    if _plt is None:
        import matplotlib.pyplot as plt
        _plt = plt
    return _plt


def plot_timeseries(
    times: np.ndarray,
    values: np.ndarray,
    ax: Optional[Any] = None,
    title: str = "",
    ylabel: str = "Value",
    color: str = "blue",
    **kwargs,
) -> Any:
    """
    Plot one diagnostic against tick.

    Args:
        times: Tick numbers
        values: Observable values
        ax: Matplotlib axis
        title: Plot title
        ylabel: Y-axis label
        color: Line color

    Returns:
        Matplotlib axis
    """
    plt = _get_plt()

    if ax is None:
        fig, ax = plt.subplots(figsize=(10, 4))

    ax.plot(times, values, color=color, **kwargs)
    ax.set_xlabel('Tick')
    ax.set_ylabel(ylabel)

    if title:
        ax.set_title(title)

    return ax


def plot_multiple_timeseries(
    times: np.ndarray,
    series: Dict[str, np.ndarray],
    ax: Optional[Any] = None,
    title: str = "",
    **kwargs,
) -> Any:
    """Plot several named series on the same axis."""
    plt = _get_plt()

    if ax is None:
        fig, ax = plt.subplots(figsize=(10, 4))

    for name, values in series.items():
        ax.plot(times, values, label=name, **kwargs)

    ax.set_xlabel('Tick')
    ax.legend()

    if title:
        ax.set_title(title)

    return ax


def energy_series(history: Sequence) -> Dict[str, np.ndarray]:
    """
    Extract plot arrays from a sequence of TickReport or TickSample objects.

    Returns:
        Dict with tick, kinetic, potential, total, drift, avg_density
        and one count array per archetype name
    """
    ticks = np.array([r.tick for r in history], dtype=np.int64)
    out = {
        'tick': ticks,
        'kinetic': np.array([r.energy.kinetic for r in history]),
        'potential': np.array([r.energy.potential for r in history]),
        'total': np.array([r.energy.total for r in history]),
        'drift': np.array([r.energy.drift_ratio for r in history]),
        'avg_density': np.array([r.field_metrics.avg_density for r in history]),
    }
    names = sorted({name for r in history for name in r.field_metrics.archetype_counts})
    for name in names:
        out[name] = np.array([r.field_metrics.archetype_counts.get(name, 0) for r in history])
    return out


def plot_energy_summary(
    history: Sequence,
    figsize: Tuple[int, int] = (14, 10),
) -> Any:
    """
    Create summary figure with multiple panels.

    Panels:
    1. Kinetic / potential / total energy
    2. Energy drift ratio
    3. Average local density
    4. Archetype counts

    Args:
        history: List of TickReport or TickSample objects
        figsize: Figure size

    Returns:
        Matplotlib figure
    """
    plt = _get_plt()

    fig, axes = plt.subplots(2, 2, figsize=figsize)
    data = energy_series(history)
    ticks = data['tick']

    plot_multiple_timeseries(
        ticks,
        {'kinetic': data['kinetic'], 'potential': data['potential'], 'total': data['total']},
        ax=axes[0, 0], title='Energy', linewidth=1,
    )

    plot_timeseries(ticks, data['drift'], ax=axes[0, 1], title='Energy Drift',
                    ylabel='(E - E0) / |E0|', color='red', linewidth=1)
    axes[0, 1].axhline(0, color='gray', linestyle='--', alpha=0.5)

    plot_timeseries(ticks, data['avg_density'], ax=axes[1, 0], title='Average Local Density',
                    ylabel='Density', color='green', linewidth=1)

    counts = {name: data[name] for name in ('star', 'black_hole', 'galaxy_halo') if name in data}
    if counts:
        plot_multiple_timeseries(ticks, counts, ax=axes[1, 1], title='Archetype Counts', linewidth=1)
    else:
        axes[1, 1].set_title('Archetype Counts')
    axes[1, 1].set_ylabel('Cells')

    plt.tight_layout()
    return fig
