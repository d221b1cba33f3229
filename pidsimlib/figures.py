"""Plotly figures for simulation results."""

from __future__ import annotations

from typing import Sequence, Tuple

import plotly.graph_objects as go

from .simulation import SimulationResult

SIGNAL_LABELS = {
    "reference": "Reference r(t)",
    "output": "Plant Output y(t)",
    "error": "Error e(t)",
    "control": "Control u(t)",
}

SIGNAL_COLORS = {
    "reference": "#2c7fb8",
    "output": "#31a354",
    "error": "#fd8d3c",
    "control": "#b30000",
}


def build_figure(
    result: SimulationResult,
    title: str = "Closed-Loop PID Response",
    comparisons: Sequence[Tuple[str, SimulationResult]] = (),
) -> go.Figure:
    """Reference and output on the main axis, control effort on a secondary axis.

    ``comparisons`` overlays the outputs of earlier runs as dotted lines, one
    trace per ``(label, result)`` pair, after the three main traces.
    """

    fig = go.Figure()
    fig.add_trace(
        go.Scatter(
            name="Reference",
            x=result.time,
            y=result.reference,
            mode="lines",
            line=dict(color=SIGNAL_COLORS["reference"], dash="dash"),
        )
    )
    fig.add_trace(
        go.Scatter(
            name="Plant Output",
            x=result.time,
            y=result.output,
            mode="lines",
            line=dict(color=SIGNAL_COLORS["output"]),
        )
    )
    fig.add_trace(
        go.Scatter(
            name="Control Signal",
            x=result.time,
            y=result.control,
            mode="lines",
            line=dict(color=SIGNAL_COLORS["control"]),
            yaxis="y2",
        )
    )
    for label, earlier in comparisons:
        fig.add_trace(
            go.Scatter(
                name=label,
                x=earlier.time,
                y=earlier.output,
                mode="lines",
                line=dict(dash="dot", width=1.5),
                opacity=0.7,
            )
        )
    fig.update_layout(
        title=title,
        xaxis_title="Time (s)",
        yaxis=dict(title="Amplitude"),
        yaxis2=dict(title="Control", overlaying="y", side="right", showgrid=False),
        template="plotly_white",
        legend=dict(orientation="h", x=0.5, xanchor="center", y=1.1),
        margin=dict(l=60, r=60, t=60, b=40),
    )
    return fig


def build_signal_figure(result: SimulationResult, signal: str) -> go.Figure:
    """Single-signal plot, e.g. for inspecting the error or control path."""

    if signal not in SIGNAL_LABELS:
        raise KeyError(signal)
    fig = go.Figure(
        go.Scatter(
            name=SIGNAL_LABELS[signal],
            x=result.time,
            y=result.series(signal),
            mode="lines",
            line=dict(color=SIGNAL_COLORS[signal]),
        )
    )
    fig.update_layout(
        title=SIGNAL_LABELS[signal],
        xaxis_title="Time (s)",
        template="plotly_white",
        margin=dict(l=60, r=30, t=60, b=40),
    )
    return fig


__all__ = ["SIGNAL_LABELS", "build_figure", "build_signal_figure"]
