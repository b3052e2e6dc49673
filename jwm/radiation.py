'''
Date: 2026-02-15
Shortwave heating from the diurnal and seasonal solar cycle, attenuated by
surface albedo and cloud optical depth, and a Newtonian longwave
relaxation toward latitude- and level-dependent equilibrium temperatures.
'''
import jax.numpy as jnp

from jwm.grid import Grid
from jwm.humidity import exner
from jwm.params import RadiationParameters
from jwm.physical_constants import cp, grav, p_top
from jwm.state import ModelState

SECONDS_PER_DAY = 86400.0
DAYS_PER_YEAR = 365.0
OBLIQUITY_DEG = 23.44


def day_of_year(time_utc):
    return (time_utc / SECONDS_PER_DAY) % DAYS_PER_YEAR


def solar_declination(doy):
    """Solar declination (radians) for a fractional day of the year."""
    return jnp.deg2rad(OBLIQUITY_DEG) * jnp.sin(2 * jnp.pi * (doy - 81.0) / DAYS_PER_YEAR)


def cos_zenith(lat_deg, lon_deg, time_utc):
    """
    Cosine of the solar zenith angle, floored at zero.

    Args:
        lat_deg: Latitude, broadcastable against lon_deg
        lon_deg: Longitude east of Greenwich
        time_utc: Seconds since the start of the year

    Returns:
        cosine of the zenith angle, 0 at night
    """
    decl = solar_declination(day_of_year(time_utc))
    hours = (time_utc / 3600.0) % 24.0
    hour_angle = 2 * jnp.pi * ((hours + lon_deg / 15.0) / 24.0 - 0.5)
    lat = jnp.deg2rad(lat_deg)
    cosz = jnp.sin(lat) * jnp.sin(decl) + jnp.cos(lat) * jnp.cos(decl) * jnp.cos(hour_angle)
    return jnp.maximum(cosz, 0.0)


def surface_albedo(state: ModelState, params: RadiationParameters):
    """Climatological albedo where known, else land/ocean defaults; blended toward sea-ice albedo by ice cover."""
    base = jnp.where(state.land_mask > 0.5, params.albedo_land, params.albedo_ocean)
    base = jnp.where(state.albedo > 0, state.albedo, base)
    ice = jnp.clip(state.sea_ice, 0.0, 1.0) * (state.land_mask <= 0.5)
    return base + (params.albedo_sea_ice - base) * ice


def cloud_optical_depth(state: ModelState, params: RadiationParameters):
    """Optical depth of the low (two lowest levels) and high (levels 1-2) condensate paths."""
    nz = state.nz
    mass = state.layer_thickness / grav
    path = (state.qc + params.rad_ice_factor * state.qi) * mass
    low = {max(0, nz - 2), nz - 1}
    high = {min(1, nz - 1), min(2, nz - 1)} - low
    lwp = sum(path[lev] for lev in sorted(low)) + sum(path[lev] for lev in sorted(high))
    return params.k_tau * lwp


def equilibrium_profiles(grid: Grid, params: RadiationParameters):
    """Lower and upper equilibrium temperatures per row, (ny, 1)."""
    lat_norm = jnp.clip(jnp.abs(grid.lat_deg) / 90.0, 0.0, 1.0)
    shape = lat_norm if params.teq_lat_shape == "linear" else grid.sin_lat ** 2
    teq_lower = params.teq_lower_eq - (params.teq_lower_eq - params.teq_lower_pole) * shape
    teq_upper = params.teq_upper_eq - (params.teq_upper_eq - params.teq_upper_pole) * shape
    return teq_lower[:, None], teq_upper[:, None]


def step_radiation(state: ModelState, grid: Grid, params: RadiationParameters, dt, time_utc) -> ModelState:
    """
    Applies one step of radiative heating to theta.

    The shortwave flux absorbed by the column is distributed over the levels
    by mass with a shape ``0.4 + 0.6 sigma`` favouring the lower levels (or
    split between the lowest and the upper level). Longwave relaxes each
    level toward an equilibrium temperature interpolated between the upper
    and lower profiles by sigma (or level index), with a timescale and
    efficiency modulated by the column emissivity. The theta increment is
    clamped to ``dtheta_max_per_step``.

    Args:
        state: Model state with fresh temperature and pressure
        grid: Model grid
        params: Radiation parameters
        dt: Timestep (s)
        time_utc: Model time (s)

    Returns:
        state with theta updated
    """
    if not params.enable:
        return state
    nz = state.nz
    dp = state.layer_thickness
    mass = jnp.maximum(dp / grav, 1e-6)
    p_lev = jnp.maximum(p_top, state.p_mid)
    pi = exner(p_lev)

    sw_toa = params.s0 * cos_zenith(grid.lat_deg[:, None], grid.lon_deg[None, :], time_utc)
    tau_cloud = cloud_optical_depth(state, params)
    wv_column = jnp.sum(state.qv * dp, axis=0) / grav
    emissivity = jnp.clip(params.eps0 + params.k_wv * (wv_column / 50.0) + params.k_cld * (tau_cloud / 10.0), 0.0, 1.0)
    sw_surface = sw_toa * (1.0 - surface_albedo(state, params)) * jnp.exp(-params.k_sw * tau_cloud)

    sigma = jnp.clip((p_lev - p_top) / jnp.maximum(1e-6, state.ps - p_top)[None], 0.0, 1.0)
    sw_total = params.heat_frac_lower + params.heat_frac_upper
    if params.enable_sw_mass_distribution and sw_total > 0:
        weights = mass * (0.4 + 0.6 * sigma)
        frac = weights / jnp.sum(weights, axis=0, keepdims=True)
        heating = sw_surface[None] * sw_total * frac / (cp * mass)
    else:
        levels = jnp.arange(nz)[:, None, None]
        heat_frac = jnp.where(levels == nz - 1, params.heat_frac_lower,
                              jnp.where(levels == min(2, nz - 1), params.heat_frac_upper, 0.0))
        heating = sw_surface[None] * heat_frac / (cp * mass)
    heating = jnp.where(sw_surface[None] > 0, heating, 0.0)

    if params.enable_sigma_lw_profile:
        profile = sigma
    else:
        profile = jnp.broadcast_to((jnp.arange(nz) / max(1, nz - 1))[:, None, None], sigma.shape)
    teq_lower, teq_upper = equilibrium_profiles(grid, params)
    teq = teq_upper[None] + (teq_lower - teq_upper)[None] * profile
    tau = params.tau_rad_upper + (params.tau_rad_lower - params.tau_rad_upper) * profile
    lw_upper = 0.8 + 0.2 * emissivity
    lw_lower = 0.6 + 0.4 * emissivity
    lw_factor = lw_upper[None] + (lw_lower - lw_upper)[None] * profile
    cooling = -(state.t - teq) / tau * lw_factor

    dtheta = jnp.clip((heating + cooling) * dt / pi, -params.dtheta_max_per_step, params.dtheta_max_per_step)
    return state.replace(theta=state.theta + dtheta)
