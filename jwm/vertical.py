'''
Date: 2026-02-14
Vertical physics: omega diagnosis, large-scale vertical advection, PBL
mixing with warm-rain autoconversion, and deep convection.
'''
import jax.numpy as jnp
import tree_math

from jwm.convection import convective_trigger, deep_convection, mix_pairs, positive_percentile
from jwm.grid import Grid, divergence
from jwm.params import VerticalParameters
from jwm.state import ModelState


@tree_math.struct
class VerticalDiagnostics:
    convective_fraction: jnp.ndarray
    omega_pos_p50: jnp.ndarray # percentiles of positive ascent (Pa/s)
    omega_pos_p90: jnp.ndarray
    omega_pos_p95: jnp.ndarray
    instab_p50: jnp.ndarray # percentiles of the theta-e proxy instability (K)
    instab_p90: jnp.ndarray
    instab_p95: jnp.ndarray
    detrained_total: jnp.ndarray # global sum of detrained condensate (kg/m^2)
    pbl_autoconverted: jnp.ndarray # mean PBL warm-rain conversion (kg/kg)
    water_residual: jnp.ndarray # max |column water change| (kg/m^2), 0 unless debug_conservation


def diagnose_omega(state: ModelState, grid: Grid, params: VerticalParameters):
    """
    Interface vertical velocity (Pa/s, positive downward) from the horizontal
    divergence integrated down from the model top, omega[0] = 0.

    With ``enable_omega_mass_fix`` the profile is corrected by
    ``(dps_dt_applied - omega[nz]) * sigma_half`` so that the surface value
    matches the realized surface pressure tendency.
    """
    div = divergence(state.u, state.v, grid)
    dp = state.layer_thickness
    omega = jnp.concatenate([jnp.zeros_like(state.ps)[None], -jnp.cumsum(div * dp, axis=0)], axis=0)
    if params.enable_omega_mass_fix:
        correction = state.dps_dt_applied - omega[-1]
        omega = omega + correction[None] * state.sigma_half[:, None, None]
    return omega


def vertical_advection(state: ModelState, params: VerticalParameters, dt) -> ModelState:
    """
    Upwind flux-form transport of theta and qv through the interior
    interfaces. The mass crossing each interface, ``|omega| dt``, is capped
    at ``vadv_cfl_fraction`` of the thinner neighbouring layer and scaled
    down where a donor layer would export more than it holds. The theta
    change per step is capped at ``vadv_dtheta_max``.
    """
    dp = state.layer_thickness
    interior = state.omega[1:-1]
    cap = params.vadv_cfl_fraction * jnp.minimum(dp[:-1], dp[1:])
    # pressure crossed per step, positive downward
    flux = jnp.clip(interior * dt, -cap, cap)
    # a layer exports at most its own mass through its two interfaces
    outflow = jnp.zeros_like(dp).at[:-1].add(jnp.maximum(flux, 0.0)).at[1:].add(jnp.maximum(-flux, 0.0))
    limit = jnp.minimum(1.0, dp / jnp.maximum(outflow, 1e-12))
    flux = jnp.where(flux > 0, flux * limit[:-1], flux * limit[1:])

    def transport(field):
        upwind = jnp.where(flux > 0, field[:-1], field[1:])
        moved = flux * upwind
        tendency = jnp.zeros_like(field)
        tendency = tendency.at[:-1].add(-moved)
        tendency = tendency.at[1:].add(moved)
        return tendency / dp

    dtheta = jnp.clip(transport(state.theta), -params.vadv_dtheta_max, params.vadv_dtheta_max)
    qv = jnp.maximum(state.qv + transport(state.qv), 0.0)
    return state.replace(theta=state.theta + dtheta, qv=qv)


def pbl_top_level(state: ModelState, params: VerticalParameters):
    """
    Highest level inside the PBL per column: the level just below the first
    (searching upward) whose pressure lies above
    ``ps - pbl_depth_frac * (ps - p_top)``.
    """
    nz = state.nz
    p_surface = state.p_half[-1]
    p_pbl = p_surface - params.pbl_depth_frac * (p_surface - state.p_half[0])
    top = jnp.full(state.ps.shape, nz - 1, dtype=jnp.int32)
    found = jnp.zeros(state.ps.shape, dtype=bool)
    for lev in range(nz - 1, -1, -1):
        hit = ~found & (state.p_mid[lev] < p_pbl)
        top = jnp.where(hit, min(nz - 1, lev + 1), top)
        found = found | hit
    return top


def pbl_mixing(state: ModelState, params: VerticalParameters, dt):
    """
    Stability-dependent mixing of adjacent level pairs inside the PBL,
    tapered toward its top, followed by warm-rain autoconversion of cloud
    water inside the PBL.

    Returns:
        state: Mixed state
        autoconverted: Cloud water converted to rain (kg/kg), (nz, ny, nx)
    """
    nz = state.nz
    top = pbl_top_level(state, params)
    depth = jnp.maximum(1, nz - 1 - top)

    def rate(lev, fields):
        theta = fields['theta']
        unstable = theta[lev - 1] <= theta[lev]
        tau = jnp.where(unstable, params.tau_pbl_unstable, params.tau_pbl_stable)
        base = jnp.clip(dt / jnp.maximum(tau, params.eps), 0.0, params.max_mix_frac_pbl)
        height = (nz - 1 - lev) / depth
        frac = jnp.clip(base * (1.0 - params.pbl_taper * height), 0.0, params.max_mix_frac_pbl)
        return jnp.where(lev > top, frac, 0.0)

    def condensate_rate(lev, fields):
        return rate(lev, fields) * params.pbl_cond_mix_scale

    if nz >= 2:
        state = mix_pairs(state, levels=range(nz - 1, 0, -1), rate=rate,
                          condensate_rate=condensate_rate if params.pbl_mix_condensate else None)

    autoconverted = jnp.zeros_like(state.qc)
    if params.pbl_warm_rain:
        frac = min(max(dt / max(params.tau_auto, params.eps), 0.0), params.auto_max_frac)
        in_pbl = jnp.arange(nz)[:, None, None] >= top[None]
        autoconverted = jnp.where(in_pbl & (state.qc > params.qc_auto0), frac * (state.qc - params.qc_auto0), 0.0)
        state = state.replace(qc=state.qc - autoconverted, qr=state.qr + autoconverted)
    return state.clip_water(), autoconverted


def step_vertical(state: ModelState, grid: Grid, params: VerticalParameters, dt):
    """
    Runs the vertical physics of one step in order: omega diagnosis, vertical
    advection, PBL mixing, deep convection and convective overturning.

    Args:
        state: Model state with fresh pressure fields
        grid: Model grid
        params: Vertical physics parameters
        dt: Timestep (s)

    Returns:
        state: Updated state, including omega and the convective mask
        diagnostics: VerticalDiagnostics
    """
    water_before = state.column_water() if params.debug_conservation else None

    state = state.replace(omega=diagnose_omega(state, grid, params))

    if params.enable_vertical_advection:
        state = vertical_advection(state, params, dt)

    autoconverted = jnp.zeros_like(state.qc)
    if params.enable_mixing:
        state, autoconverted = pbl_mixing(state, params, dt)

    if params.enable_convection:
        state, result, trigger = deep_convection(state, params, dt)
        detrained = jnp.sum(result.condensate)
        convective_fraction = jnp.mean(result.triggered)
    else:
        trigger = convective_trigger(state, params)
        state = state.replace(
            conv_mask=jnp.zeros_like(state.conv_mask),
            conv_top_level=jnp.full_like(state.conv_top_level, state.nz - 1),
            conv_condensate=jnp.zeros_like(state.conv_condensate),
        )
        detrained = jnp.zeros(())
        convective_fraction = jnp.zeros(())

    state = state.clip_water()

    if params.debug_conservation:
        residual = jnp.max(jnp.abs(state.column_water() - water_before))
    else:
        residual = jnp.zeros(())

    diagnostics = VerticalDiagnostics(
        convective_fraction=convective_fraction,
        omega_pos_p50=positive_percentile(trigger.ascent, 0.5),
        omega_pos_p90=positive_percentile(trigger.ascent, 0.9),
        omega_pos_p95=positive_percentile(trigger.ascent, 0.95),
        instab_p50=jnp.quantile(trigger.instability, 0.5, method='lower'),
        instab_p90=jnp.quantile(trigger.instability, 0.9, method='lower'),
        instab_p95=jnp.quantile(trigger.instability, 0.95, method='lower'),
        detrained_total=detrained,
        pbl_autoconverted=jnp.mean(autoconverted),
        water_residual=residual,
    )
    return state, diagnostics

