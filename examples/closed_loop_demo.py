"""Simulate a PID loop on a preset plant, auto-tune it and save both responses as HTML."""

from __future__ import annotations

import logging
from pathlib import Path

from pidsimlib.figures import build_figure
from pidsimlib.pid_models import preset_transfer_function
from pidsimlib.simulation import SimulationConfig, SimulationResult, simulate
from pidsimlib.tuning import AutoTuner


def run_simulation(
    plant: str = "mass-spring-damper",
    kp: float = 2.0,
    ki: float = 1.0,
    kd: float = 0.5,
    duration: float = 20.0,
    time_step: float = 0.01,
) -> SimulationResult:
    """Simulate a step response and return the structured result."""

    tf = preset_transfer_function(plant)
    config = SimulationConfig(
        numerator=tf.numerator,
        denominator=tf.denominator,
        kp=kp,
        ki=ki,
        kd=kd,
        duration=duration,
        time_step=time_step,
        anti_windup_mode="clamping",
        derivative_filter_mode="firstOrder",
    )
    return simulate(config)


def print_metrics(result: SimulationResult) -> None:
    for name, value in sorted(result.metrics.as_dict().items()):
        shown = "n/a" if value is None else f"{value:.4f}"
        print(f"  {name}: {shown}")


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    reports_dir = Path("reports")
    reports_dir.mkdir(exist_ok=True)

    result = run_simulation()
    output_path = reports_dir / "closed_loop_demo.html"
    build_figure(result).write_html(str(output_path), include_plotlyjs="cdn")
    print(f"Saved closed-loop response to {output_path}")
    print("Step metrics:")
    print_metrics(result)

    # Third-order lag: P control oscillates at Ku = 8.
    tuner = AutoTuner(
        SimulationConfig(numerator=[1.0], denominator=[1.0, 3.0, 3.0, 1.0], duration=60.0),
        kp_start=1.0,
        kp_stop=20.0,
        kp_step=0.5,
    )
    session = tuner.run()
    print(f"Tuning status: {session.status.value}")
    if not session.complete:
        return
    print(f"  Ku = {session.ultimate_gain:.3f}, Tu = {session.ultimate_period:.3f} s")
    for rule, gains in session.suggestions.items():
        print(f"  {rule:20s} Kp={gains.kp:.3f} Ki={gains.ki:.3f} Kd={gains.kd:.3f}")

    gains = session.suggestions["ziegler-nichols"]
    tuned = simulate(
        SimulationConfig(
            numerator=[1.0],
            denominator=[1.0, 3.0, 3.0, 1.0],
            kp=gains.kp,
            ki=gains.ki,
            kd=gains.kd,
            duration=30.0,
        )
    )
    untuned = simulate(SimulationConfig(numerator=[1.0], denominator=[1.0, 3.0, 3.0, 1.0], duration=30.0))
    tuned_path = reports_dir / "closed_loop_tuned.html"
    figure = build_figure(tuned, title="Ziegler-Nichols Tuned Response", comparisons=[("P only, Kp=1", untuned)])
    figure.write_html(str(tuned_path), include_plotlyjs="cdn")
    print(f"Saved tuned response to {tuned_path}")
    print_metrics(tuned)


if __name__ == "__main__":
    main()
