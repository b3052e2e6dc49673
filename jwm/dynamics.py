"""
Date: 2026-02-12
Horizontal momentum update on sigma levels.
"""
import jax.numpy as jnp

from jwm.filters import polar_filter_passes, zonal_binomial_filter
from jwm.grid import Grid, ddx, ddy, laplacian
from jwm.params import DynamicsParameters
from jwm.physical_constants import rearth
from jwm.state import ModelState


def drag_timescale(nz, params: DynamicsParameters):
    """Linear drag timescale per level, top value at level 0, surface value at nz-1."""
    frac = jnp.arange(nz) / max(nz - 1, 1)
    return params.tau_drag_top + (params.tau_drag_surface - params.tau_drag_top) * frac


def cap_wind_speed(u, v, max_wind):
    """Rescales (u, v) where the speed exceeds ``max_wind``; also returns the capped-cell count."""
    speed = jnp.sqrt(u ** 2 + v ** 2)
    over = speed > max_wind
    scale = jnp.where(over, max_wind / jnp.maximum(speed, 1e-12), 1.0)
    return u * scale, v * scale, jnp.sum(over)


def step_winds(state: ModelState, grid: Grid, params: DynamicsParameters, dt, step_index=0):
    """
    Advances u and v by one timestep.

    du/dt = -dphi/dx + f v - u/tau + nu lap(u) + tan(lat)/a u v
    dv/dt = -dphi/dy - f u - v/tau + nu lap(v) - tan(lat)/a u^2

    The speed is then capped at ``max_wind``. When the filter strides are
    non-zero a zonal 1-2-1 filter is applied to high-latitude rows.

    Args:
        state: Model state with fresh geopotential
        grid: Model grid
        params: Dynamics parameters
        dt: Timestep (s)
        step_index: Step counter used for the filter strides, may be traced

    Returns:
        state: Updated state
        n_capped: Number of level/cells whose wind was capped
    """
    u0, v0 = state.u, state.v
    tau = drag_timescale(state.nz, params)[:, None, None]
    f = grid.coriolis[:, None]

    dphidx = ddx(state.phi_mid, grid)
    dphidy = ddy(state.phi_mid, grid)

    if params.enable_metric_terms:
        metric = (grid.sin_lat / grid.cos_lat / rearth)[:, None]
    else:
        metric = 0.0

    du = -dphidx + f * v0 - u0 / tau + params.nu_laplacian * laplacian(u0, grid) + metric * u0 * v0
    dv = -dphidy - f * u0 - v0 / tau + params.nu_laplacian * laplacian(v0, grid) - metric * u0 * u0

    u, v, n_capped = cap_wind_speed(u0 + du * dt, v0 + dv * dt, params.max_wind)

    if params.polar_filter_every_steps > 0:
        apply = step_index % params.polar_filter_every_steps == 0
        if params.extra_filter_every_steps > 0:
            extra = jnp.where(step_index % params.extra_filter_every_steps == 0, params.extra_filter_passes, 0)
        else:
            extra = 0
        passes = polar_filter_passes(grid, params.polar_filter_lat_start_deg, 1, 3, extra)
        passes = jnp.where(apply, passes, 0)
        max_passes = 4 + params.extra_filter_passes
        u = zonal_binomial_filter(u, passes, max_passes)
        v = zonal_binomial_filter(v, passes, max_passes)

    return state.replace(u=u, v=v), n_capped
