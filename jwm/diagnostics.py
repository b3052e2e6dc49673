'''
Date: 2026-02-16
Derived 2-d fields for rendering and sensors: cloud cover with memory,
condensate paths, cloud optical depth, relative humidity, layer omega,
vorticity and divergence.
'''
import dataclasses

import jax.numpy as jnp
import tree_math

from jwm.grid import Grid, divergence, vorticity
from jwm.humidity import relative_humidity
from jwm.params import DiagnosticsParameters
from jwm.physical_constants import grav
from jwm.state import ModelState


@tree_math.struct
class DiagnosticFields:
    cloud: jnp.ndarray # Total cloud cover, random overlap of low and high
    cloud_low: jnp.ndarray
    cloud_high: jnp.ndarray
    cwp_low: jnp.ndarray # Low cloud water path (kg/m^2)
    cwp_high: jnp.ndarray # High condensate path (kg/m^2)
    tau_low: jnp.ndarray # Low cloud optical depth, clamped to tau_max_low
    tau_high: jnp.ndarray
    rh: jnp.ndarray # Relative humidity of the lowest level
    rh_upper: jnp.ndarray # Relative humidity at lev_upper
    omega_lower: jnp.ndarray # Layer-mean omega of the lowest level (Pa/s)
    omega_upper: jnp.ndarray
    vort: jnp.ndarray # Relative vorticity at lev_vort (1/s)
    div: jnp.ndarray # Divergence at lev_vort (1/s)
    tau_low_clamp_count: jnp.ndarray
    tau_high_clamp_count: jnp.ndarray

    @classmethod
    def zeros(cls, shape):
        fields = {f.name: jnp.zeros(shape) for f in dataclasses.fields(cls)}
        fields['tau_low_clamp_count'] = jnp.zeros((), dtype=jnp.int32)
        fields['tau_high_clamp_count'] = jnp.zeros((), dtype=jnp.int32)
        return cls(**fields)


def _smoothstep(edge0, edge1, x):
    t = jnp.clip((x - edge0) / max(1e-8, edge1 - edge0), 0.0, 1.0)
    return t * t * (3 - 2 * t)


def condensate_paths(state: ModelState, params: DiagnosticsParameters):
    """
    Low cloud water path from the lowest level (depth capped at
    ``dp_tau_low_max``) and high ice/liquid paths from the two top levels,
    where cloud water colder than 273 K counts partly as ice.

    Returns:
        lwp_low, cwp_high_ice, cwp_high_liquid, qc_mean_low, q_mean_high
    """
    nz = state.nz
    dp = state.layer_thickness
    bottom = nz - 1
    lwp_low = state.qc[bottom] * jnp.minimum(dp[bottom], params.dp_tau_low_max) / grav
    qc_mean_low = state.qc[bottom]

    high_levels = sorted({0, min(1, nz - 1)})
    ice_paths = []
    liquid_paths = []
    cond = []
    weights = []
    for lev in high_levels:
        mass = dp[lev] / grav
        ice = jnp.clip((273.0 - state.t[lev]) / 20.0, 0.0, 1.0)
        ice_paths.append((state.qi[lev] + state.qc[lev] * ice) * mass)
        liquid_paths.append(state.qc[lev] * (1.0 - ice) * mass)
        cond.append((state.qc[lev] + state.qi[lev]) * mass)
        weights.append(mass)
    weight = sum(weights)
    q_mean_high = jnp.where(weight > 0, sum(cond) / jnp.maximum(weight, 1e-12), 0.0)
    return lwp_low, sum(ice_paths), sum(liquid_paths), qc_mean_low, q_mean_high


def update_diagnostics(state: ModelState, grid: Grid, params: DiagnosticsParameters, dt):
    """
    Computes the diagnostic fields and advances the cloud memory.

    With ``enable_new_coverage`` low and high cloud covers relax toward
    targets built from relative humidity, static stability, layer omega and
    a decaying convective anvil memory (reset to 1 in convective columns).
    Otherwise cover is a smoothstep of the layer condensate and the high
    optical depth.

    Returns:
        state: state with cloud_low_cov, cloud_high_cov and conv_anvil updated
        fields: DiagnosticFields
    """
    nz = state.nz
    bottom = nz - 1
    bottom2 = max(nz - 2, 0)
    lev_upper = min(max(0, params.lev_upper), nz - 1)
    dt = dt if dt > 0 else 120.0

    lwp_low, cwp_high_ice, cwp_high_liq, qc_mean_low, q_mean_high = condensate_paths(state, params)
    tau_phys_low = params.k_tau_low_liquid * lwp_low
    tau_phys_high = params.k_tau_high_ice * cwp_high_ice + params.k_tau_high_liquid * cwp_high_liq
    tau_low = jnp.clip(tau_phys_low, 0.0, params.tau_max_low)
    tau_high = jnp.clip(tau_phys_high, 0.0, params.tau_max_high)

    rh_low = relative_humidity(state.qv[bottom], state.t[bottom], state.p_mid[bottom])
    rh_up = relative_humidity(state.qv[lev_upper], state.t[lev_upper], state.p_mid[lev_upper])
    omega_lower = 0.5 * (state.omega[bottom] + state.omega[bottom + 1])
    omega_upper = 0.5 * (state.omega[lev_upper] + state.omega[min(nz, lev_upper + 1)])

    if params.enable_new_coverage:
        a_low = 1.0 - jnp.exp(-dt / max(1e-6, params.tau_cloud_low_seconds))
        a_high = 1.0 - jnp.exp(-dt / max(1e-6, params.tau_cloud_high_seconds))
        decay = jnp.exp(-dt / max(1e-6, params.conv_anvil_tau_seconds))
        anvil = jnp.where(state.conv_mask > 0.5, 1.0, state.conv_anvil * decay)

        stability = _smoothstep(params.stab_low0, params.stab_low1, state.theta[bottom2] - state.theta[bottom])
        subsidence = _smoothstep(params.omega_low_subs0, params.omega_low_subs1, omega_lower)
        no_conv = jnp.clip(1.0 - params.conv_low_suppress * anvil, 0.0, 1.0)
        low_target = jnp.clip(_smoothstep(params.rh_low0, params.rh_low1, rh_low) * stability * subsidence * no_conv,
                              0.0, 1.0)

        rh_high = _smoothstep(params.rh_high0, params.rh_high1, rh_up)
        ascent = _smoothstep(params.omega_high0, params.omega_high1, -omega_upper)
        conv_boost = jnp.clip(params.conv_anvil_boost * anvil, 0.0, 1.0)
        high_target = 1.0 - (1.0 - rh_high * ascent) * (1.0 - rh_high * conv_boost)

        cloud_low = jnp.clip(state.cloud_low_cov + a_low * (low_target - state.cloud_low_cov), 0.0, 1.0)
        cloud_high = jnp.clip(state.cloud_high_cov + a_high * (high_target - state.cloud_high_cov), 0.0, 1.0)
        state = state.replace(cloud_low_cov=cloud_low, cloud_high_cov=cloud_high, conv_anvil=anvil)
    else:
        cloud_low = _smoothstep(params.qc0_low, params.qc1_low, qc_mean_low)
        high_qc = _smoothstep(params.qc0_high, params.qc1_high, q_mean_high)
        high_tau = 1.0 - jnp.exp(-tau_high / max(1e-6, params.tau0))
        cloud_high = 1.0 - (1.0 - high_qc) * (1.0 - min(max(params.w_tau_high, 0.0), 1.0) * high_tau)
        state = state.replace(cloud_low_cov=cloud_low, cloud_high_cov=cloud_high)

    lev = min(max(0, params.lev_vort), nz - 1)
    fields = DiagnosticFields(
        cloud=1.0 - (1.0 - cloud_low) * (1.0 - cloud_high),
        cloud_low=cloud_low,
        cloud_high=cloud_high,
        cwp_low=lwp_low,
        cwp_high=cwp_high_ice + cwp_high_liq,
        tau_low=tau_low,
        tau_high=tau_high,
        rh=rh_low,
        rh_upper=rh_up,
        omega_lower=omega_lower,
        omega_upper=omega_upper,
        vort=vorticity(state.u[lev], state.v[lev], grid),
        div=divergence(state.u[lev], state.v[lev], grid),
        tau_low_clamp_count=jnp.sum(tau_phys_low > params.tau_max_low).astype(jnp.int32),
        tau_high_clamp_count=jnp.sum(tau_phys_high > params.tau_max_high).astype(jnp.int32),
    )
    return state, fields
