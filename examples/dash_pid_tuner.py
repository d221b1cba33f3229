"""Dash application for interactive closed-loop PID simulation and auto-tuning."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List

import plotly.graph_objects as go
from dash import Dash, Input, Output, State, callback_context, dcc, html, no_update
from dash.exceptions import PreventUpdate

from pidsimlib.errors import ValidationError
from pidsimlib.figures import SIGNAL_LABELS, build_figure, build_signal_figure
from pidsimlib.pid_models import PLANT_PRESETS
from pidsimlib.preferences import config_from_dict, config_to_dict, load_config, save_config
from pidsimlib.simulation import Metrics, SimulationConfig, SimulationResult, result_to_csv, simulate
from pidsimlib.tuning import AutoTuner

logger = logging.getLogger(__name__)

GAIN_LIMITS = {"kp": 20.0, "ki": 10.0, "kd": 5.0}


def _format_metrics(metrics: Metrics) -> html.Table:
    label_map = {
        "overshoot": "Overshoot (%)",
        "rise_time": "Rise Time (s)",
        "peak_time": "Peak Time (s)",
        "settling_time": "Settling Time (s)",
        "steady_state_error": "Steady-State Error",
    }
    rows = []
    for key, value in metrics.as_dict().items():
        rows.append(
            html.Tr([
                html.Th(label_map.get(key, key)),
                html.Td("-" if value is None else f"{value:.4f}"),
            ])
        )
    return html.Table(rows, className="metrics-table")


def _parse_float(value: Any) -> float:
    if value is None or value == "":
        raise ValueError("Missing numeric value")
    return float(value)


def _parse_coefficients(text: Any) -> List[float]:
    if not text:
        raise ValueError("Missing transfer function coefficients")
    return [float(part) for part in str(text).split(",") if part.strip()]


def _clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


def _config_from_inputs(values: Dict[str, Any]) -> SimulationConfig:
    return SimulationConfig(
        numerator=_parse_coefficients(values["numerator"]),
        denominator=_parse_coefficients(values["denominator"]),
        kp=_parse_float(values["kp"]),
        ki=_parse_float(values["ki"]),
        kd=_parse_float(values["kd"]),
        reference_kind=values["reference_kind"],
        amplitude=_parse_float(values["amplitude"]),
        frequency=_parse_float(values["frequency"]),
        time_step=_parse_float(values["time_step"]),
        duration=_parse_float(values["duration"]),
        anti_windup_mode=values["anti_windup_mode"],
        derivative_filter_mode=values["derivative_filter_mode"],
        disturbance_amplitude=_parse_float(values["disturbance_amplitude"]),
        settling_tolerance=_parse_float(values["settling_tolerance"]) / 100.0,
    )


def build_gain_row(name: str, label: str, value: float, step: float) -> html.Div:
    return html.Div(
        [
            html.Label(label, className="controller-label"),
            dcc.Input(
                id=f"{name}-slider",
                type="range",
                min=0.0,
                max=GAIN_LIMITS[name],
                step=step,
                value=value,
                className="controller-range",
            ),
            dcc.Input(id=name, type="number", value=value, step=step, className="controller-input"),
        ],
        className="controller-row",
    )


def _field(label: str, component: Any) -> html.Div:
    return html.Div([html.Label(label), component], className="control-field")


DEFAULT_CONFIG = load_config()
DEFAULT_RESULT = simulate(DEFAULT_CONFIG)

INPUT_IDS = [
    "numerator",
    "denominator",
    "kp",
    "ki",
    "kd",
    "reference_kind",
    "amplitude",
    "frequency",
    "time_step",
    "duration",
    "anti_windup_mode",
    "derivative_filter_mode",
    "disturbance_amplitude",
    "settling_tolerance",
]

# Inputs that re-run the simulation as soon as they change.
LIVE_INPUT_IDS = ("kp", "ki", "kd", "reference_kind", "anti_windup_mode", "derivative_filter_mode")

app = Dash(__name__)
app.title = "PID Loop Simulator"

app.layout = html.Div(
    [
        html.H1("PID Closed-Loop Simulator", className="page-title"),
        html.Div(
            [
                html.Div(
                    [
                        dcc.Graph(id="response-graph", figure=build_figure(DEFAULT_RESULT)),
                        html.Div(id="metrics-panel", children=_format_metrics(DEFAULT_RESULT.metrics), className="metrics-card"),
                        dcc.Dropdown(
                            id="signal-select",
                            options=[{"label": label, "value": key} for key, label in SIGNAL_LABELS.items()],
                            value="error",
                            clearable=False,
                        ),
                        dcc.Graph(id="signal-graph", figure=build_signal_figure(DEFAULT_RESULT, "error")),
                    ],
                    className="results-card",
                ),
                html.Div(
                    [
                        html.H2("Plant", className="card-title"),
                        _field(
                            "Preset",
                            dcc.Dropdown(
                                id="plant-preset",
                                options=[{"label": name, "value": name} for name in PLANT_PRESETS],
                                placeholder="custom",
                            ),
                        ),
                        _field("Numerator", dcc.Input(id="numerator", type="text", value=", ".join(f"{v:g}" for v in DEFAULT_CONFIG.numerator))),
                        _field("Denominator", dcc.Input(id="denominator", type="text", value=", ".join(f"{v:g}" for v in DEFAULT_CONFIG.denominator))),
                        html.Div(id="plant-display", children=DEFAULT_CONFIG.transfer_function().describe()),
                        html.H2("Controller", className="card-title"),
                        build_gain_row("kp", "Kp", DEFAULT_CONFIG.kp, 0.05),
                        build_gain_row("ki", "Ki", DEFAULT_CONFIG.ki, 0.05),
                        build_gain_row("kd", "Kd", DEFAULT_CONFIG.kd, 0.01),
                        _field(
                            "Anti-windup",
                            dcc.Dropdown(
                                id="anti_windup_mode",
                                options=[{"label": "None", "value": "none"}, {"label": "Clamping", "value": "clamping"}],
                                value=DEFAULT_CONFIG.anti_windup_mode.value,
                                clearable=False,
                            ),
                        ),
                        _field(
                            "Derivative filter",
                            dcc.Dropdown(
                                id="derivative_filter_mode",
                                options=[{"label": "None", "value": "none"}, {"label": "First order", "value": "firstOrder"}],
                                value=DEFAULT_CONFIG.derivative_filter_mode.value,
                                clearable=False,
                            ),
                        ),
                        html.H2("Simulation", className="card-title"),
                        _field(
                            "Reference",
                            dcc.Dropdown(
                                id="reference_kind",
                                options=[{"label": kind.title(), "value": kind} for kind in ("step", "ramp", "sine", "square")],
                                value=DEFAULT_CONFIG.reference_kind.value,
                                clearable=False,
                            ),
                        ),
                        _field("Amplitude", dcc.Input(id="amplitude", type="number", value=DEFAULT_CONFIG.amplitude, step=0.1)),
                        _field("Frequency (Hz)", dcc.Input(id="frequency", type="number", value=DEFAULT_CONFIG.frequency, step=0.1)),
                        _field("Time step (s)", dcc.Input(id="time_step", type="number", value=DEFAULT_CONFIG.time_step, min=0.0001, step=0.001)),
                        _field("Duration (s)", dcc.Input(id="duration", type="number", value=DEFAULT_CONFIG.duration, min=0.1, step=0.5)),
                        _field("Disturbance", dcc.Input(id="disturbance_amplitude", type="number", value=DEFAULT_CONFIG.disturbance_amplitude, min=0, step=0.01)),
                        _field("Settling band (%)", dcc.Input(id="settling_tolerance", type="number", value=DEFAULT_CONFIG.settling_tolerance * 100.0, min=0.1, step=0.5)),
                        html.Div(
                            [
                                html.Button("Run Simulation", id="run-button", n_clicks=0, className="primary"),
                                html.Button("Auto-Tune", id="tune-button", n_clicks=0),
                                html.Button("Download CSV", id="download-button", n_clicks=0),
                                html.Button("Save Settings", id="save-settings", n_clicks=0, className="secondary"),
                            ],
                            className="sim-actions",
                        ),
                        html.Div(id="tuning-panel", className="status"),
                        html.Div(id="save-status", className="status"),
                        html.Div(id="status-message", className="status", children="Ready."),
                    ],
                    className="side-panel",
                ),
            ],
            className="layout-grid",
        ),
        dcc.Store(id="config-store", data=config_to_dict(DEFAULT_CONFIG)),
        dcc.Download(id="download-data"),
    ]
)


def register_gain_sync(name: str) -> None:
    """Keep a gain's slider and number input in step."""

    @app.callback(
        Output(name, "value"),
        Output(f"{name}-slider", "value"),
        Input(f"{name}-slider", "value"),
        Input(name, "value"),
        prevent_initial_call=True,
    )
    def sync_gain(slider_value: Any, input_value: Any):
        triggered = callback_context.triggered_id
        raw = slider_value if triggered == f"{name}-slider" else input_value
        if raw in (None, ""):
            raise PreventUpdate
        try:
            numeric = float(raw)
        except (TypeError, ValueError) as exc:
            raise PreventUpdate from exc
        numeric = _clamp(numeric, 0.0, GAIN_LIMITS[name])
        return numeric, numeric


for _gain in GAIN_LIMITS:
    register_gain_sync(_gain)


@app.callback(
    Output("numerator", "value"),
    Output("denominator", "value"),
    Input("plant-preset", "value"),
    prevent_initial_call=True,
)
def apply_preset(preset: Any):
    if not preset:
        raise PreventUpdate
    tf = PLANT_PRESETS[preset]
    return ", ".join(f"{v:g}" for v in tf.numerator), ", ".join(f"{v:g}" for v in tf.denominator)


@app.callback(
    Output("response-graph", "figure"),
    Output("metrics-panel", "children"),
    Output("plant-display", "children"),
    Output("status-message", "children"),
    Output("config-store", "data"),
    Input("run-button", "n_clicks"),
    *[Input(name, "value") for name in LIVE_INPUT_IDS],
    *[State(name, "value") for name in INPUT_IDS if name not in LIVE_INPUT_IDS],
)
def run_simulation_callback(_n_clicks: int, *values: Any):
    names = list(LIVE_INPUT_IDS) + [name for name in INPUT_IDS if name not in LIVE_INPUT_IDS]
    try:
        # stored config must reproduce this run for the signal plot and CSV export
        config = _config_from_inputs(dict(zip(names, values))).with_fixed_seed()
        result = simulate(config)
    except ValueError as exc:  # ValidationError and InvalidPlantError are ValueErrors
        return no_update, no_update, no_update, f"Error: {exc}", no_update

    status = f"Last updated {datetime.now().strftime('%H:%M:%S')}"
    return (
        build_figure(result),
        _format_metrics(result.metrics),
        config.transfer_function().describe(),
        status,
        config_to_dict(config),
    )


@app.callback(
    Output("signal-graph", "figure"),
    Input("signal-select", "value"),
    Input("config-store", "data"),
)
def show_signal(signal: str, payload: Dict[str, Any]) -> go.Figure:
    try:
        result: SimulationResult = simulate(config_from_dict(payload))
    except ValidationError as exc:
        logger.warning("Cannot plot signal: %s", exc)
        raise PreventUpdate from exc
    return build_signal_figure(result, signal)


@app.callback(
    Output("tuning-panel", "children"),
    Input("tune-button", "n_clicks"),
    State("config-store", "data"),
    prevent_initial_call=True,
)
def run_auto_tune(n_clicks: int, payload: Dict[str, Any]):
    if not n_clicks:
        raise PreventUpdate
    try:
        session = AutoTuner(config_from_dict(payload), kp_stop=GAIN_LIMITS["kp"]).run()
    except ValidationError as exc:
        return f"Tuning failed: {exc}"
    if not session.complete:
        return "No sustained oscillation found; the plant may not reach the stability limit under P control."

    items = [
        html.Li(f"{rule}: Kp={gains.kp:.3f}, Ki={gains.ki:.3f}, Kd={gains.kd:.3f}")
        for rule, gains in session.suggestions.items()
    ]
    header = html.Div(f"Ku = {session.ultimate_gain:.3f}, Tu = {session.ultimate_period:.3f} s")
    return [header, html.Ul(items)]


@app.callback(
    Output("save-status", "children"),
    Input("save-settings", "n_clicks"),
    State("config-store", "data"),
    prevent_initial_call=True,
)
def save_settings(n_clicks: int, payload: Dict[str, Any]):
    if not n_clicks:
        raise PreventUpdate
    try:
        path = save_config(config_from_dict(payload))
    except (ValidationError, OSError) as exc:
        return f"Save failed: {exc}"
    return f"Settings saved to {path} at {datetime.now().strftime('%H:%M:%S')}"


@app.callback(
    Output("download-data", "data"),
    Input("download-button", "n_clicks"),
    State("config-store", "data"),
    prevent_initial_call=True,
)
def download_csv(n_clicks: int, payload: Dict[str, Any]):
    if n_clicks <= 0 or not payload:
        raise PreventUpdate
    result = simulate(config_from_dict(payload))
    filename = f"pid_loop_result_{datetime.now().strftime('%Y%m%d_%H%M%S')}.csv"
    return dict(content=result_to_csv(result), filename=filename)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    app.run(debug=True)
