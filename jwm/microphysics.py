'''
Date: 2026-02-15
Bulk microphysics: saturation adjustment, cloud evaporation, liquid/ice
partitioning, autoconversion, ice aggregation, rain evaporation and
sedimentation of rain and ice to the surface.
'''
import jax.numpy as jnp

from jwm.humidity import exner, saturation_mixing_ratio
from jwm.params import MicrophysicsParameters
from jwm.physical_constants import alhc, cp, grav, p_top
from jwm.state import ModelState

SECONDS_PER_HOUR = 3600.0


def _smoothstep(edge0, edge1, x):
    t = jnp.clip((x - edge0) / max(1e-6, edge1 - edge0), 0.0, 1.0)
    return t * t * (3 - 2 * t)


def ice_fraction(temperature, params: MicrophysicsParameters):
    """Linear ramp from 0 at ``t_freeze`` to 1 at ``t_ice_full``."""
    return jnp.clip((params.t_freeze - temperature) / max(1e-6, params.t_freeze - params.t_ice_full), 0.0, 1.0)


def _convective_overrides(state: ModelState, params: MicrophysicsParameters):
    if params.enable_convective_outcome:
        conv = (state.conv_mask > 0.5)[None]
    else:
        conv = jnp.zeros((1,) + state.ps.shape, dtype=bool)
    tau_cloud_min = jnp.where(conv, max(1.0, params.tau_evap_cloud_min * params.conv_tau_evap_cloud_scale),
                              params.tau_evap_cloud_min)
    tau_cloud_max = jnp.where(conv, max(1.0, params.tau_evap_cloud_max * params.conv_tau_evap_cloud_scale),
                              params.tau_evap_cloud_max)
    k_auto = jnp.where(conv, params.k_auto * params.conv_k_auto_scale, params.k_auto)
    precip_eff = jnp.clip(params.precip_eff + jnp.where(conv, params.conv_precip_eff_boost, 0.0), 0.0, 1.0)
    dtheta_cap = jnp.where(conv, params.dtheta_max_per_step_conv, params.dtheta_max_per_step)
    return tau_cloud_min, tau_cloud_max, k_auto, precip_eff, jnp.maximum(dtheta_cap, 0.0)


def cloud_processes(state: ModelState, params: MicrophysicsParameters, dt) -> ModelState:
    """
    Column-local conversions between vapour, cloud water, cloud ice and rain.
    Latent heating of every vapour exchange is limited to the per-step theta
    cap (relaxed in convective columns when convective outcomes are enabled).
    """
    p = jnp.maximum(p_top, state.p_mid)
    pi = exner(p)
    temperature = state.t
    qs = saturation_mixing_ratio(temperature, p)
    ice = ice_fraction(temperature, params)
    tau_cloud_min, tau_cloud_max, k_auto, precip_eff, dtheta_cap = _convective_overrides(state, params)
    dq_cap = jnp.where(dtheta_cap > 0, dtheta_cap * pi * cp / alhc, jnp.inf)

    qv, qc, qi, qr, theta = state.qv, state.qc, state.qi, state.qr, state.theta

    # saturation adjustment, or evaporation of existing condensate
    condense = jnp.minimum(jnp.maximum(qv - qs, 0.0), dq_cap)
    rh = jnp.clip(qv / jnp.maximum(qs, 1e-8), 0.0, 2.0)
    tau_evap_cloud = tau_cloud_min + (tau_cloud_max - tau_cloud_min) * rh
    q_cond = qc + qi
    evaporate = jnp.where((qv < qs) & (q_cond > 0),
                          jnp.minimum(jnp.minimum(q_cond, (qs - qv) * dt / tau_evap_cloud), dq_cap), 0.0)
    evap_frac = jnp.where(q_cond > 0, evaporate / jnp.maximum(q_cond, 1e-30), 0.0)
    qc = qc * (1.0 - evap_frac) + condense
    qi = qi * (1.0 - evap_frac)
    qv = qv - condense + evaporate
    theta = theta + alhc / cp * (condense - evaporate) / pi

    # relax the liquid/ice split toward the temperature-dependent target
    q_cond = qc + qi
    tau_phase = jnp.where(ice >= 0.5, params.tau_freeze, params.tau_melt)
    phase_frac = jnp.clip(dt / jnp.maximum(1e-6, tau_phase), 0.0, 1.0)
    qi_target = q_cond * ice
    qc_new = qc + phase_frac * (q_cond - qi_target - qc)
    qi_new = qi + phase_frac * (qi_target - qi)
    qc = jnp.maximum(jnp.where(q_cond > 0, qc_new, qc), 0.0)
    qi = jnp.maximum(jnp.where(q_cond > 0, qi_new, qi), 0.0)

    # autoconversion of cloud water, faster and at a lower threshold when cold
    qc0_eff = params.qc0 * (1.0 - params.qc0_cold_reduce * ice)
    k_auto_eff = k_auto * (1.0 + params.k_auto_cold_boost * ice) * precip_eff
    auto_frac = jnp.clip(k_auto_eff * dt, 0.0, max(0.0, params.auto_max_frac))
    dq = jnp.minimum(qc, auto_frac * jnp.maximum(0.0, qc - qc0_eff))
    qc = qc - dq
    qr = qr + dq

    auto_frac_ice = jnp.clip(params.k_auto_ice * precip_eff * dt, 0.0, max(0.0, params.auto_max_frac))
    dq = jnp.minimum(qi, auto_frac_ice * jnp.maximum(0.0, qi - params.qi0))
    qi = qi - dq
    qr = qr + dq

    agg_max = min(max(params.ice_agg_max_frac, 0.0), 1.0)
    if agg_max > 0:
        agg_frac = jnp.clip(dt / max(1e-6, params.tau_ice_agg) * precip_eff, 0.0, agg_max)
        dq = qi * agg_frac * ice
        qi = qi - dq
        qr = qr + dq

    # rain evaporation in sub-saturated air
    rh = jnp.clip(qv / jnp.maximum(qs, 1e-8), 0.0, 2.0)
    dryness = jnp.clip((params.rh_evap0 - rh) / max(1e-6, params.rh_evap0 - params.rh_evap1), 0.0, 1.0)
    tau_evap_rain = params.tau_evap_rain_min + (params.tau_evap_rain_max - params.tau_evap_rain_min) * rh
    dq = jnp.minimum(qr, (qs - qv) * dt / tau_evap_rain) * dryness
    dq = jnp.where((qv < qs) & (qr > 0) & (rh < params.rh_evap0), jnp.minimum(dq, dq_cap), 0.0)
    dq = jnp.maximum(dq, 0.0)
    qr = qr - dq
    qv = qv + dq
    theta = theta - alhc / cp * dq / pi

    return state.replace(qv=qv, qc=qc, qi=qi, qr=qr, theta=theta)


def _fall(q, mass, fall_frac, lev, surface):
    """Moves ``fall_frac`` of the mass of ``q[lev]`` one level down.

    Returns the updated field and the mass (kg/m^2) leaving the bottom level.
    """
    mass_out = jnp.maximum(q[lev], 0.0) * mass[lev] * fall_frac
    q = q.at[lev].add(-mass_out / mass[lev])
    if lev == surface:
        return q, mass_out
    q = q.at[lev + 1].add(mass_out / mass[lev + 1])
    return q, jnp.zeros_like(mass_out)


def sedimentation(state: ModelState, params: MicrophysicsParameters, dt):
    """
    Flux-form sedimentation. Levels are visited from the surface upward, so
    falling mass moves at most one level per step. Ice above freezing melts
    into rain on the way, with a smooth ramp over the first 2 K.

    Returns:
        state: Updated mixing ratios
        surface_mass: Precipitation reaching the ground this step (kg/m^2)
    """
    nz = state.nz
    surface = nz - 1
    mass = jnp.maximum(state.layer_thickness, 1e-6) / grav
    qi, qr = state.qi, state.qr
    surface_mass = jnp.zeros_like(state.ps)

    if params.enable_ice_sedimentation:
        fall_ice = min(max(params.k_fall_ice * dt, 0.0), 1.0)
        melt_frac = min(max(dt / max(1e-6, params.tau_melt_ice_to_rain), 0.0), 1.0)
        for lev in range(surface, -1, -1):
            if params.enable_ice_melt_to_rain:
                warm = _smoothstep(params.t_freeze, params.t_freeze + 2.0, state.t[lev])
                melt = jnp.where(state.t[lev] > params.t_freeze, jnp.maximum(qi[lev], 0.0) * melt_frac * warm, 0.0)
                qi = qi.at[lev].add(-melt)
                qr = qr.at[lev].add(melt)
            if fall_ice > 0:
                qi, out = _fall(qi, mass, fall_ice, lev, surface)
                surface_mass = surface_mass + out

    fall_rain = min(max(params.k_fall * dt, 0.0), 1.0)
    if fall_rain > 0:
        for lev in range(surface, -1, -1):
            qr, out = _fall(qr, mass, fall_rain, lev, surface)
            surface_mass = surface_mass + out

    return state.replace(qi=qi, qr=qr), surface_mass


def rainout(state: ModelState, params: MicrophysicsParameters, dt):
    """Drops a fraction of the rain of every level straight to the ground."""
    fall = min(max(params.k_fall * dt, 0.0), 1.0)
    mass = jnp.maximum(state.layer_thickness, 0.0) / grav
    dq = jnp.maximum(state.qr, 0.0) * fall
    return state.replace(qr=state.qr - dq), jnp.sum(dq * mass, axis=0)


def step_microphysics(state: ModelState, params: MicrophysicsParameters, dt) -> ModelState:
    """
    Advances the water species by one step.

    The surface precipitation of the step is added to ``precip_accum`` (mm)
    and converted to ``precip_rate`` (mm/h), clamped to
    ``[0, precip_rate_max]``.

    Args:
        state: Model state with fresh temperature and pressure
        params: Microphysics parameters
        dt: Timestep (s)

    Returns:
        Updated state
    """
    if not params.enable:
        return state
    state = cloud_processes(state, params, dt)
    if params.enable_flux_sedimentation:
        state, surface_mass = sedimentation(state, params, dt)
    elif params.k_fall > 0:
        state, surface_mass = rainout(state, params, dt)
    else:
        surface_mass = jnp.zeros_like(state.ps)

    precip_rate = jnp.clip(surface_mass * (SECONDS_PER_HOUR / dt), 0.0, params.precip_rate_max)
    state = state.replace(precip_rate=precip_rate, precip_accum=state.precip_accum + surface_mass)
    return state.clip_water()
