'''
Date: 2026-02-16
Slow relaxation toward climatology, run at a coarser cadence than the
model step.
'''
import logging

import jax.numpy as jnp

from jwm.climatology import ClimatologyNow
from jwm.filters import box_smooth
from jwm.grid import Grid
from jwm.humidity import exner, saturation_mixing_ratio
from jwm.params import MassParameters, NudgingParameters
from jwm.state import ModelState

logger = logging.getLogger(__name__)


def target_relative_humidity(grid: Grid, land_mask, params: NudgingParameters):
    """Lowest-level RH target, linear in |lat| between equator and pole values."""
    lat_norm = jnp.clip(jnp.abs(grid.lat_deg) / 90.0, 0.0, 1.0)[:, None]
    ocean = params.rh_ocean_eq + (params.rh_ocean_pole - params.rh_ocean_eq) * lat_norm
    land = params.rh_land_eq + (params.rh_land_pole - params.rh_land_eq) * lat_norm
    return jnp.where(land_mask > 0.5, land, ocean)


def surface_temperature_target(state: ModelState, climo: ClimatologyNow):
    """2 m temperature over land where available, SST elsewhere."""
    if climo.t2m is None:
        return climo.sst
    return jnp.where(state.land_mask > 0.5, climo.t2m, climo.sst)


def step_nudging(state: ModelState, grid: Grid, climo: ClimatologyNow, params: NudgingParameters,
                 mass_params: MassParameters, dt) -> ModelState:
    """
    Relaxes the state toward climatology over the accumulated interval ``dt``.

    Surface pressure relaxes toward the box-smoothed sea-level pressure
    climatology with timescale ``tau_ps`` and is re-clamped to the mass
    bounds; this needs an SLP climatology. With ``enable_surface_layer`` the
    lowest level's theta and qv relax toward the climatological surface
    temperature and a latitude- and land/ocean-dependent RH target, each
    increment box-smoothed before it is applied.

    Args:
        state: Model state
        grid: Model grid
        climo: Climatology at the current model time
        params: Nudging parameters
        mass_params: Surface pressure bounds
        dt: Time since the previous nudging call (s)

    Returns:
        Updated state
    """
    if not params.enable:
        return state

    if params.enable_ps and climo.slp is not None:
        target = box_smooth(climo.slp, params.smooth_lon, params.smooth_lat)
        ps = state.ps + (target - state.ps) * (dt / params.tau_ps)
        state = state.replace(ps=jnp.clip(ps, mass_params.ps_min, mass_params.ps_max))

    if params.enable_surface_layer:
        s = state.nz - 1
        p = state.p_mid[s]
        t_target = surface_temperature_target(state, climo)
        theta_target = t_target / exner(p)
        qv_target = target_relative_humidity(grid, state.land_mask, params) * saturation_mixing_ratio(t_target, p)

        frac_theta = jnp.minimum(1.0, dt / params.tau_theta)
        frac_qv = jnp.minimum(1.0, dt / params.tau_qv)
        dtheta = box_smooth((theta_target - state.theta[s]) * frac_theta, params.smooth_lon, params.smooth_lat)
        dqv = box_smooth((qv_target - state.qv[s]) * frac_qv, params.smooth_lon, params.smooth_lat)
        state = state.replace(theta=state.theta.at[s].add(dtheta), qv=state.qv.at[s].add(dqv))

    return state.clip_water()
