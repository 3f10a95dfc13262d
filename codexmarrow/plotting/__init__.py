"""Plotting helpers for incorporation validation figures."""

from codexmarrow.plotting.styles import (
    DEFAULT_PLOT_STYLE,
    PlotStyle,
    apply_plot_style,
    plot_style_dict,
)
from codexmarrow.plotting.utils import sanitize_label, save_figure

__all__ = [
    "PlotStyle",
    "DEFAULT_PLOT_STYLE",
    "apply_plot_style",
    "plot_style_dict",
    "sanitize_label",
    "save_figure",
]
