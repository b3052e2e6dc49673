"""
Date: 2026-02-12
Semi-Lagrangian transport of winds and scalars along one-step backward
trajectories in grid-index space.
"""
from typing import NamedTuple

import jax.numpy as jnp

from jwm.filters import polar_filter_passes, zonal_binomial_filter
from jwm.grid import Grid
from jwm.params import AdvectionParameters
from jwm.state import ModelState, WATER_SPECIES


class DeparturePoints(NamedTuple):
    """Bilinear stencil of the departure point of every level/cell."""
    lev: jnp.ndarray
    i0: jnp.ndarray
    i1: jnp.ndarray
    j0: jnp.ndarray
    j1: jnp.ndarray
    fx: jnp.ndarray
    fy: jnp.ndarray
    di: jnp.ndarray # Zonal displacement in cells, used for the wind rotation


def departure_points(u, v, grid: Grid, dt, max_cells) -> DeparturePoints:
    """
    Backtracks every level/cell by (u dt / dx, v dt / dy) cells, limited to
    ``max_cells``. Longitude wraps; latitude is clamped to the grid.
    """
    nz, ny, nx = u.shape
    di = jnp.clip(u * dt * grid.inv_dx[:, None], -max_cells, max_cells)
    dj = jnp.clip(v * dt * grid.inv_dy[:, None], -max_cells, max_cells)

    i_src = jnp.arange(nx)[None, None, :] - di
    # rows increase southward, so northward wind departs from a larger j
    j_src = jnp.clip(jnp.arange(ny)[None, :, None] + dj, 0.0, ny - 1.001)

    i_floor = jnp.floor(i_src)
    j_floor = jnp.floor(j_src)
    i0 = jnp.mod(i_floor.astype(jnp.int32), nx)
    j0 = j_floor.astype(jnp.int32)
    return DeparturePoints(
        lev=jnp.arange(nz)[:, None, None],
        i0=i0,
        i1=jnp.mod(i0 + 1, nx),
        j0=j0,
        j1=jnp.minimum(j0 + 1, ny - 1),
        fx=i_src - i_floor,
        fy=j_src - j_floor,
        di=di,
    )


def interpolate(field, dep: DeparturePoints):
    """Bilinear sample of ``field`` (nz, ny, nx) at the departure points."""
    f00 = field[dep.lev, dep.j0, dep.i0]
    f10 = field[dep.lev, dep.j0, dep.i1]
    f01 = field[dep.lev, dep.j1, dep.i0]
    f11 = field[dep.lev, dep.j1, dep.i1]
    return ((1 - dep.fx) * (1 - dep.fy) * f00 + dep.fx * (1 - dep.fy) * f10
            + (1 - dep.fx) * dep.fy * f01 + dep.fx * dep.fy * f11)


def step_advection(state: ModelState, grid: Grid, params: AdvectionParameters, dt) -> ModelState:
    """
    Advects u, v, theta and the water species by one timestep.

    Sampled wind vectors are rotated by the longitude swept along the
    trajectory scaled by sin(lat). High-latitude rows of the advected winds
    and theta (and water, if ``filter_moisture``) are then smoothed zonally
    with ``2 + floor(2 w)`` passes.
    """
    dep = departure_points(state.u, state.v, grid, dt, params.max_backtrace_cells)

    u_s = interpolate(state.u, dep)
    v_s = interpolate(state.v, dep)
    alpha = dep.di * jnp.deg2rad(grid.cell_lon_deg) * grid.sin_lat[:, None]
    u = u_s * jnp.cos(alpha) - v_s * jnp.sin(alpha)
    v = u_s * jnp.sin(alpha) + v_s * jnp.cos(alpha)

    updated = {"u": u, "v": v, "theta": interpolate(state.theta, dep)}
    for name in WATER_SPECIES:
        updated[name] = interpolate(getattr(state, name), dep)

    if params.enable_polar_filter:
        passes = polar_filter_passes(grid, params.polar_lat_start_deg, 2, 2)
        filtered = ("u", "v", "theta") + (WATER_SPECIES if params.filter_moisture else ())
        for name in filtered:
            updated[name] = zonal_binomial_filter(updated[name], passes, 4)

    return state.replace(**updated).clip_water()
