"""
Date: 2026-02-12
Surface pressure evolution from the vertically integrated mass-flux
divergence, with global-mean conservation and bound enforcement.
"""
import jax.numpy as jnp
import tree_math

from jwm.grid import Grid, divergence
from jwm.params import MassParameters
from jwm.state import ModelState


@tree_math.struct
class MassDiagnostics:
    raw_mean: jnp.ndarray # Area-weighted mean of the mass-flux-divergence tendency (Pa/s)
    centred_mean: jnp.ndarray # Same mean after the global mean is removed (Pa/s)
    clamp_min_count: jnp.ndarray # Cells held at ps_min
    clamp_max_count: jnp.ndarray # Cells held at ps_max
    mean_applied: jnp.ndarray # Mean tendency handed to the integration (Pa/s)
    mean_realized: jnp.ndarray # Mean tendency actually realized after the hard clamp (Pa/s)


def mass_flux_tendency(state: ModelState, grid: Grid):
    """-sum_k div(V_k dp_k), the raw surface pressure tendency (Pa/s)."""
    dp = state.layer_thickness
    return -jnp.sum(divergence(state.u * dp, state.v * dp, grid), axis=0)


def resolve_bounds(ps, tendency, grid: Grid, params: MassParameters, dt):
    """
    Iteratively freezes cells whose next-step pressure would leave
    [ps_min, ps_max] at the bound-implied tendency, and redistributes the
    resulting global-mean residual over the cells that are still free.

    Returns:
        tendency: Constrained tendency (Pa/s)
        at_min, at_max: Masks of cells frozen at each bound
    """
    w = grid.area_weights()
    w_total = jnp.sum(w)
    free = jnp.ones(ps.shape, dtype=bool)
    at_min = jnp.zeros(ps.shape, dtype=bool)
    at_max = jnp.zeros(ps.shape, dtype=bool)
    for _ in range(params.bound_iterations):
        ps_next = ps + tendency * dt
        hi = free & (ps_next > params.ps_max)
        lo = free & (ps_next < params.ps_min)
        tendency = jnp.where(hi, (params.ps_max - ps) / dt, tendency)
        tendency = jnp.where(lo, (params.ps_min - ps) / dt, tendency)
        at_max = at_max | hi
        at_min = at_min | lo
        free = free & ~(hi | lo)
        if params.conserve_global_mean:
            residual = jnp.sum(tendency * w) / w_total
            w_free = jnp.sum(jnp.where(free, w, 0.0))
            correction = jnp.where(w_free > 0, residual * w_total / jnp.maximum(w_free, 1e-12), 0.0)
            tendency = jnp.where(free, tendency - correction, tendency)
    return tendency, at_min, at_max


def step_surface_pressure(state: ModelState, grid: Grid, params: MassParameters, dt):
    """
    Integrates the continuity equation for surface pressure.

    The raw tendency has its area-weighted mean removed, is clipped to
    ``max_abs_dps_dt`` and re-centred, then constrained by
    :func:`resolve_bounds` before ``ps`` is stepped and hard-clamped.

    Returns:
        state: state with ps, dps_dt_raw and dps_dt_applied updated
        diagnostics: MassDiagnostics
    """
    raw = mass_flux_tendency(state, grid)
    raw_mean = grid.global_mean(raw)
    if params.conserve_global_mean:
        raw = raw - grid.global_mean(raw)

    tendency = jnp.clip(raw, -params.max_abs_dps_dt, params.max_abs_dps_dt)
    if params.conserve_global_mean:
        tendency = tendency - grid.global_mean(tendency)

    tendency, at_min, at_max = resolve_bounds(state.ps, tendency, grid, params, dt)

    ps = jnp.clip(state.ps + tendency * dt, params.ps_min, params.ps_max)
    realized = (ps - state.ps) / dt

    diagnostics = MassDiagnostics(
        raw_mean=raw_mean,
        centred_mean=grid.global_mean(raw),
        clamp_min_count=jnp.sum(at_min | (ps <= params.ps_min)),
        clamp_max_count=jnp.sum(at_max | (ps >= params.ps_max)),
        mean_applied=grid.global_mean(tendency),
        mean_realized=grid.global_mean(realized),
    )
    return state.replace(ps=ps, dps_dt_raw=raw, dps_dt_applied=realized), diagnostics
