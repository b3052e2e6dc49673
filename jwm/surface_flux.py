'''
Date: 2026-02-15
Bulk aerodynamic exchange between the surface and the lowest model level,
surface temperature relaxation and the land soil-water bucket.
'''
import jax.numpy as jnp
import tree_math

from jwm.humidity import exner, saturation_mixing_ratio
from jwm.params import SurfaceParameters
from jwm.physical_constants import alhc, cp, grav
from jwm.state import ModelState


@tree_math.struct
class SurfaceFluxes:
    evaporation: jnp.ndarray # kg/m^2/s
    sensible_heat: jnp.ndarray # W/m^2, positive upward into the atmosphere
    wind_speed: jnp.ndarray # m/s


def bulk_fluxes(state: ModelState, params: SurfaceParameters) -> SurfaceFluxes:
    """
    Evaporation ``rho Ce |V| (qs(Ts) - qv)`` (capped at ``evap_max``, limited by
    soil-water availability ``(W / cap) ** beta`` over land) and sensible heat
    ``rho cp Ch |V| (Ts - T)`` against the lowest model level.
    """
    s = state.nz - 1
    land = state.land_mask > 0.5
    wind = jnp.maximum(params.wind_floor, jnp.hypot(state.u[s], state.v[s]))
    qs_surface = saturation_mixing_ratio(state.ts, state.p_mid[s])
    evap = params.rho_air * params.ce * wind * jnp.maximum(0.0, qs_surface - state.qv[s])
    evap = jnp.minimum(evap, params.evap_max)
    availability = jnp.clip(state.soil_w / jnp.maximum(1e-6, state.soil_cap), 0.0, 1.0)
    evap = jnp.where(land, evap * availability ** params.soil_evap_exponent, evap)
    sensible = params.rho_air * cp * params.ch * wind * (state.ts - state.t[s])
    return SurfaceFluxes(evaporation=evap, sensible_heat=sensible, wind_speed=wind)


def step_surface(state: ModelState, params: SurfaceParameters, dt) -> ModelState:
    """
    Exchanges heat and moisture with the surface for one step.

    Fluxes use the surface temperature at the start of the step; ``ts`` then
    relaxes toward SST over ocean and toward a fixed baseline over land and
    is clamped to ``[ts_min, ts_max]``. Evaporation moistens the lowest
    level; with ``enable_theta_closure`` the sensible heat warms it and the
    latent heat of evaporation cools it. Over land the soil bucket gains
    the previous step's precipitation, loses evaporation and is clamped to
    ``[0, soil_cap]``.

    Args:
        state: Model state with fresh temperature and pressure
        params: Surface parameters
        dt: Timestep (s)

    Returns:
        Updated state
    """
    if not params.enable:
        return state
    s = state.nz - 1
    land = state.land_mask > 0.5
    fluxes = bulk_fluxes(state, params)

    ts_target = jnp.where(land, params.land_ts_baseline, state.sst)
    tau = jnp.where(land, params.land_tau_ts, params.ocean_tau_ts)
    ts = jnp.clip(state.ts + (ts_target - state.ts) * (dt / tau), params.ts_min, params.ts_max)

    mass = jnp.maximum(1e-6, state.layer_thickness[s] / grav)
    dqv = fluxes.evaporation * dt / mass
    qv = state.qv.at[s].add(dqv)

    theta = state.theta
    if params.enable_theta_closure:
        pi = jnp.maximum(1e-6, exner(jnp.maximum(1e-6, state.p_mid[s])))
        dtheta = fluxes.sensible_heat * dt / (cp * mass * pi) - alhc / cp * dqv / pi
        theta = theta.at[s].add(dtheta)

    precip = state.precip_rate / 3600.0
    soil_w = jnp.clip(state.soil_w + (precip - fluxes.evaporation) * dt, 0.0, None)
    # water above capacity runs off
    soil_w = jnp.where(state.soil_cap > 0, jnp.minimum(soil_w, state.soil_cap), soil_w)
    soil_w = jnp.where(land, soil_w, state.soil_w)

    return state.replace(ts=ts, qv=qv, theta=theta, soil_w=soil_w).clip_water()
