# /// script
# requires-python = ">=3.11"
# dependencies = ["typer>=0.9.0", "propjax"]
#
# [tool.uv.sources]
# propjax = { path = ".." }
# ///
"""Propagate a two-body orbit with apsis and date events.

Integrates a Keplerian orbit with the adaptive integrator, logs every
periapsis and apoapsis passage, stops at a given date, and prints the state
on a regular output grid.

Requires propjax to be installed (``uv pip install -e .`` from the repo root).

Usage:
    uv run examples/propagate_events.py [OPTIONS]

Examples:
    # Two orbits of a 500 x 2000 km orbit with DP54
    uv run examples/propagate_events.py --orbits 2

    # Stop after one hour, sample every 5 minutes, with GBS
    uv run examples/propagate_events.py --stop-after 3600 --output-step 300 --method gbs
"""

import enum
import math
import time
from typing import Annotated

import jax
import jax.numpy as jnp
import typer

from propjax import GM_EARTH, R_EARTH, set_dtype
from propjax.events import Action, ApsideDetector, DateDetector, EventsLogger
from propjax.integrators import AdaptiveConfig, integrate
from propjax.sampling import StepNormalizer, StepNormalizerBounds

set_dtype(jnp.float64)


class Method(enum.StrEnum):
    """Step method."""

    rk4 = "rk4"
    rkf45 = "rkf45"
    dp54 = "dp54"
    gbs = "gbs"


@jax.jit
def two_body(t, state):
    """Two-body gravitational dynamics. State: [rx, ry, rz, vx, vy, vz]."""
    r = state[:3]
    v = state[3:]
    r_norm = jnp.linalg.norm(r)
    a = -GM_EARTH * r / r_norm**3
    return jnp.concatenate([v, a])


def periapsis_state(perigee_alt: float, apogee_alt: float) -> tuple[jax.Array, float]:
    """Equatorial orbit state at periapsis and its period."""
    rp = R_EARTH + perigee_alt
    ra = R_EARTH + apogee_alt
    sma = 0.5 * (rp + ra)
    vp = math.sqrt(GM_EARTH * (2.0 / rp - 1.0 / sma))
    period = 2.0 * math.pi * math.sqrt(sma**3 / GM_EARTH)
    return jnp.array([rp, 0.0, 0.0, 0.0, vp, 0.0]), period


def main(
    perigee: Annotated[float, typer.Option(help="Perigee altitude in km")] = 500.0,
    apogee: Annotated[float, typer.Option(help="Apogee altitude in km")] = 2000.0,
    orbits: Annotated[float, typer.Option(help="Propagation duration in orbits")] = 2.0,
    stop_after: Annotated[
        float | None, typer.Option(help="Stop the propagation at this time [s]")
    ] = None,
    output_step: Annotated[float, typer.Option(help="Output grid spacing [s]")] = 600.0,
    method: Annotated[Method, typer.Option(help="Step method")] = Method.dp54,
    tolerance: Annotated[float, typer.Option(help="Absolute and relative tolerance")] = 1e-10,
) -> None:
    """Propagate an orbit and report apsis passages."""
    y0, period = periapsis_state(perigee * 1e3, apogee * 1e3)
    t_end = orbits * period
    print(f"Orbit period: {period:.1f} s, propagating {orbits} orbits ({t_end:.1f} s)")

    events_logger = EventsLogger()
    detectors = [events_logger.monitor(ApsideDetector(threshold=1e-6, max_check_interval=300.0))]
    if stop_after is not None:
        detectors.append(events_logger.monitor(DateDetector(stop_after, action=Action.STOP)))

    def print_sample(t, y, y_dot, is_last):
        r = float(jnp.linalg.norm(y[:3]))
        v = float(jnp.linalg.norm(y[3:]))
        print(f"  t = {t:10.1f} s   |r| = {r / 1e3:10.3f} km   |v| = {v:8.3f} m/s"
              + ("   (last)" if is_last else ""))

    normalizer = StepNormalizer(output_step, print_sample, bounds=StepNormalizerBounds.BOTH)
    config = AdaptiveConfig(abs_tol=tolerance, rel_tol=tolerance, max_step=period / 10.0)

    print("\n── Samples ──")
    start = time.perf_counter()
    result = integrate(
        two_body, 0.0, y0, t_end,
        method=method.value,
        config=config,
        detectors=detectors,
        step_handlers=[normalizer],
    )
    elapsed = time.perf_counter() - start

    print("\n── Events ──")
    for event in events_logger.logged_events:
        if isinstance(event.detector, ApsideDetector):
            name = "periapsis" if event.increasing else "apoapsis"
        else:
            name = "stop date"
        r = float(jnp.linalg.norm(event.state[:3]))
        print(f"  {name:10s} t = {event.t:10.3f} s   |r| = {r / 1e3:10.3f} km")

    print(f"\nFinal time {result.t:.3f} s ({'stopped' if result.stopped else 'complete'})")
    print(f"{result.evaluations} derivative evaluations in {elapsed:.2f}s")


if __name__ == "__main__":
    typer.run(main)
