"""
Date: 2026-02-13
Initial conditions consistent with the climatology: a resting atmosphere with
a latitude-shaped, statically stable theta profile and exponentially
decaying humidity.
"""
import logging

import jax
import jax.numpy as jnp

from jwm.climatology import Climatology, ClimatologyNow, interpolate_month
from jwm.grid import Grid
from jwm.hydrostatic import update_hydrostatic
from jwm.params import HydrostaticParameters, InitializationParameters
from jwm.state import ModelState

logger = logging.getLogger(__name__)


def _smoothstep(edge0, edge1, x):
    t = jnp.clip((x - edge0) / (edge1 - edge0), 0.0, 1.0)
    return t * t * (3 - 2 * t)


def initialize_from_climatology(
    grid: Grid,
    climatology: Climatology,
    time_utc=0.0,
    seed=0,
    params: InitializationParameters = InitializationParameters(),
    hydrostatic_params: HydrostaticParameters = HydrostaticParameters(),
    sigma_half=None,
) -> ModelState:
    """
    Builds the initial model state.

    Surface temperature follows SST (minus 1 K) over ocean and the 2 m
    temperature climatology over land where available, otherwise a
    latitude-shaped baseline. Theta increases upward from the surface value
    by a fixed step per level. A small seeded theta perturbation breaks the
    zonal symmetry; equal seeds give identical states.

    Args:
        grid: Model grid
        climatology: Loaded (or fallback) climatology
        time_utc: Model time used to interpolate the monthly fields (s)
        seed: Seed of the theta perturbation
        params: Initialization coefficients
        hydrostatic_params: Used for the final hydrostatic reconstruction
        sigma_half: Optional interface sigma levels

    Returns:
        Hydrostatically consistent ModelState
    """
    state = ModelState.zeros(grid, sigma_half)
    now: ClimatologyNow = interpolate_month(climatology, time_utc)
    nz = state.nz
    land = climatology.land_mask > 0.5

    lat_abs = jnp.abs(grid.lat_deg)[:, None]
    humid_lat = _smoothstep(60.0, 0.0, lat_abs)
    theta_lat = params.theta_base + params.theta_equator_boost * humid_lat - params.theta_pole_drop * (1 - humid_lat)
    ts_baseline = jnp.broadcast_to(theta_lat - 2.0, grid.dims)

    ps = state.ps
    if params.ps_use_climatology and now.slp is not None:
        ps = jnp.clip(now.slp, params.ps_init_min, params.ps_init_max)

    ts_ocean = now.sst - 1.0 if params.ts_use_sst else ts_baseline
    ts_land = now.t2m if now.t2m is not None else ts_baseline
    ts = jnp.where(land, ts_land, ts_ocean)

    soil_cap = climatology.soil_cap
    soil_w = jnp.where(land, jnp.clip(params.soil_init_frac * soil_cap, 0.0, soil_cap), 0.0)

    qv_base = jnp.where(land, params.qv_land_base, params.qv_ocean_base)
    qv_surface = qv_base * (humid_lat + params.qv_pole_factor * (1 - humid_lat))

    # number of levels above the surface level
    height = (nz - 1 - jnp.arange(nz))[:, None, None]
    theta = ts[None] + 2.0 + height * params.theta_lapse_per_level
    qv = qv_surface[None] * jnp.exp(-height / 2.0)

    if params.theta_perturbation > 0:
        key = jax.random.PRNGKey(seed)
        noise = jax.random.uniform(key, theta.shape, minval=-1.0, maxval=1.0)
        theta = theta + params.theta_perturbation * noise

    state = state.replace(
        theta=theta,
        qv=qv,
        ps=ps,
        ts=ts,
        soil_w=soil_w,
        soil_cap=soil_cap,
        land_mask=climatology.land_mask,
        sst=now.sst,
        sea_ice=now.sea_ice,
        albedo=climatology.albedo,
    )
    logger.debug("initialized state (seed=%d, fallback climatology=%s)", seed, climatology.used_fallback)
    return update_hydrostatic(state, hydrostatic_params)
