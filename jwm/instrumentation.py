"""
Date: 2026-02-17
Coarse field statistics, the instrumentation hook protocol and the debug
sanity pass. Everything here runs on the host between jitted stages.
"""
import logging
from typing import Dict, Mapping, NamedTuple, Optional, Protocol, Sequence

import jax.numpy as jnp
import numpy as np

from jwm.diagnostics import DiagnosticFields
from jwm.grid import Grid
from jwm.params import CoreParameters, MassParameters
from jwm.state import PROGNOSTIC_2D, PROGNOSTIC_3D, WATER_SPECIES, ModelState

logger = logging.getLogger(__name__)

DEFAULT_FIELDS = PROGNOSTIC_3D + PROGNOSTIC_2D


class FieldStats(NamedTuple):
    mean: float # area-weighted mean over all levels
    max_abs: float
    min: float
    max: float


def field_stats(field, grid: Grid) -> FieldStats:
    """Area-weighted mean and extremes of a 2-d or 3-d field."""
    field = jnp.asarray(field)
    mean = grid.global_mean(field)
    return FieldStats(
        mean=float(jnp.mean(mean)),
        max_abs=float(jnp.max(jnp.abs(field))),
        min=float(jnp.min(field)),
        max=float(jnp.max(field)),
    )


def state_stats(state: ModelState, grid: Grid, names: Sequence[str] = DEFAULT_FIELDS) -> Dict[str, FieldStats]:
    return {name: field_stats(getattr(state, name), grid) for name in names}


class InstrumentationLogger(Protocol):
    """Receiver of periodic state statistics from the core."""

    def on_snapshot(self, step: int, time_utc: float, stats: Mapping[str, FieldStats]) -> None:
        ...

    def on_stage_delta(self, step: int, stage: str, before: Mapping[str, FieldStats],
                       after: Mapping[str, FieldStats]) -> None:
        ...


class LoggingInstrumentation:
    """Writes snapshots and per-stage deltas to the ``logging`` module."""

    def __init__(self, level=logging.DEBUG, min_delta=0.0):
        self.level = level
        self.min_delta = min_delta

    def on_snapshot(self, step, time_utc, stats):
        summary = " ".join(f"{name}={s.mean:.4g}/{s.max_abs:.4g}" for name, s in stats.items())
        logger.log(self.level, "snapshot step=%d t=%.0f %s", step, time_utc, summary)

    def on_stage_delta(self, step, stage, before, after):
        changes = []
        for name, b in before.items():
            a = after[name]
            d_mean = a.mean - b.mean
            d_max = a.max_abs - b.max_abs
            if abs(d_mean) > self.min_delta or abs(d_max) > self.min_delta:
                changes.append(f"{name}:dmean={d_mean:+.3g},dmax={d_max:+.3g}")
        if changes:
            logger.log(self.level, "step=%d stage=%s %s", step, stage, " ".join(changes))


class SanityReport(NamedTuple):
    ps_out_of_bounds: int
    pressure_inversions: int
    negative_water: int
    optical_depth_excess: int
    temperature_out_of_range: int
    non_finite: tuple

    @property
    def violations(self):
        return (self.ps_out_of_bounds + self.pressure_inversions + self.negative_water
                + self.optical_depth_excess + self.temperature_out_of_range + len(self.non_finite))

    @property
    def ok(self):
        return self.violations == 0


def sanity_check(state: ModelState, fields: Optional[DiagnosticFields], mass_params: MassParameters,
                 core_params: CoreParameters) -> SanityReport:
    """
    Scans the state for out-of-bounds surface pressure, pressure
    inversions, negative water, excessive optical depth, temperatures
    outside the sanity range and non-finite values. Violations are logged
    as a warning; nothing is raised.
    """
    ps = np.asarray(state.ps)
    p_half = np.asarray(state.p_half)
    t = np.asarray(state.t)
    report = SanityReport(
        ps_out_of_bounds=int(np.sum((ps < mass_params.ps_min) | (ps > mass_params.ps_max))),
        pressure_inversions=int(np.sum(np.any(np.diff(p_half, axis=0) <= 0, axis=0))),
        negative_water=int(sum(np.sum(np.asarray(getattr(state, name)) < 0) for name in WATER_SPECIES)),
        optical_depth_excess=0 if fields is None else int(np.sum(
            (np.asarray(fields.tau_low) > core_params.sanity_tau_max)
            | (np.asarray(fields.tau_high) > core_params.sanity_tau_max))),
        temperature_out_of_range=int(np.sum((t < core_params.sanity_t_min) | (t > core_params.sanity_t_max))),
        non_finite=tuple(state.check_finite()),
    )
    if not report.ok:
        logger.warning(
            "sanity: ps_bad=%d inversions=%d neg_water=%d tau>%g=%d t_range=%d non_finite=%s",
            report.ps_out_of_bounds, report.pressure_inversions, report.negative_water,
            core_params.sanity_tau_max, report.optical_depth_excess, report.temperature_out_of_range,
            ",".join(report.non_finite) or "-")
    return report
