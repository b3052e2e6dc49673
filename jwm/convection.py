'''
Date: 2026-02-14
Deep convection. Each column decides independently: the trigger test, an
entraining plume lifted from the surface level, and detrainment of the
plume condensate at its top. The decision is returned as a small
ConvectionResult and applied by the caller.

Omega is positive downward, so ascent enters the trigger as ``-omega``. The
ascent threshold is raised to the 90th percentile of the current step's
ascending cells rather than a percentile carried over from the previous
step's metrics, which keeps each step a function of its own state.
'''
from typing import NamedTuple

import jax.numpy as jnp

from jwm.humidity import exner, saturation_mixing_ratio
from jwm.params import VerticalParameters
from jwm.physical_constants import alhc, cp, grav
from jwm.state import ModelState


class ConvectionResult(NamedTuple):
    triggered: jnp.ndarray # (ny, nx) bool
    top_level: jnp.ndarray # (ny, nx) int32, plume top level, nz - 1 where no plume rose
    detrain_top: jnp.ndarray # (ny, nx) condensate detrained at the top level (kg/m^2)
    detrain_below: jnp.ndarray # (ny, nx) condensate detrained one level below the top (kg/m^2)

    @property
    def condensate(self):
        """Total detrained condensate per column (kg/m^2)."""
        return self.detrain_top + self.detrain_below


class TriggerFields(NamedTuple):
    ascent: jnp.ndarray # -omega at the top of the surface level (Pa/s)
    instability: jnp.ndarray # theta-e proxy, surface minus mid level (K)
    threshold: jnp.ndarray # ascent threshold actually used (Pa/s)
    triggered: jnp.ndarray


def mid_level(nz):
    return max(1, nz // 2)


def positive_percentile(values, q):
    """
    Lower-rank percentile of the strictly positive entries of ``values``,
    0 when there are none.
    """
    masked = jnp.where(values > 0, values, jnp.nan)
    result = jnp.nanquantile(masked, q, method='lower')
    return jnp.where(jnp.isnan(result), 0.0, result)


def thetae_proxy(theta, qv, params: VerticalParameters):
    return theta * (1.0 + params.thetae_coeff * jnp.minimum(qv, params.thetae_qv_cap))


def convective_trigger(state: ModelState, params: VerticalParameters) -> TriggerFields:
    """
    Per-column trigger test.

    A column triggers when the surface level is moist (``qv > qv_trig``) and
    near saturation (``rh > rh_trig``), the mid level is not too dry
    (``rh > rh_mid_min``), the theta-e proxy decreases by more than
    ``instab_trig`` from the surface to the mid level, and the ascent at the
    top of the surface level exceeds ``max(omega_trig, p90)``, where p90 is
    the 90th percentile of positive ascent over the domain.
    """
    nz = state.nz
    s = nz - 1
    m = mid_level(nz)
    eps = params.eps

    qs_surface = saturation_mixing_ratio(state.t[s], state.p_mid[s])
    rh_surface = state.qv[s] / jnp.maximum(qs_surface, eps)
    qs_mid = saturation_mixing_ratio(state.t[m], state.p_mid[m])
    rh_mid = state.qv[m] / jnp.maximum(qs_mid, eps)

    ascent = -state.omega[s]
    threshold = jnp.maximum(params.omega_trig, positive_percentile(ascent, 0.9))
    instability = thetae_proxy(state.theta[s], state.qv[s], params) - thetae_proxy(state.theta[m], state.qv[m], params)

    triggered = ((state.qv[s] > params.qv_trig)
                 & (rh_surface > params.rh_trig)
                 & (rh_mid > params.rh_mid_min)
                 & (ascent > threshold)
                 & (instability > params.instab_trig))
    return TriggerFields(ascent=ascent, instability=instability, threshold=threshold, triggered=triggered)


def lifted_fraction(params: VerticalParameters, dt):
    """Fraction of the surface level mass lifted by the plume in one step."""
    mu_max = min(max(params.mu0, 0.0), 1.0)
    if params.tau_conv > 0:
        return min(max(dt / max(params.tau_conv, params.eps), 0.0), mu_max)
    return mu_max


def entraining_plume(state: ModelState, triggered, params: VerticalParameters, dt) -> ConvectionResult:
    """
    Lifts a parcel from the surface level through the column.

    At each level the parcel mixes a fraction ``entrainment`` of environment
    air, condenses its supersaturation (warming by the latent heat), and
    keeps rising only while its temperature exceeds the environment by
    ``buoyancy_trig``. The condensate of a fraction ``mu`` of the surface
    level mass is detrained at the plume top (share ``detrain_top_frac``) and
    at the level below it. Each detrainment is reduced until its latent
    heating stays below ``dtheta_max_conv``, and the surface vapour supply
    caps the total.
    """
    nz = state.nz
    s = nz - 1
    dp = state.layer_thickness
    mass = dp / grav
    pi = exner(state.p_mid)
    mu = lifted_fraction(params, dt)

    theta_p = state.theta[s]
    qv_p = state.qv[s]
    rising = triggered
    top = jnp.full(triggered.shape, s, dtype=jnp.int32)
    condensed = jnp.zeros(triggered.shape)
    for lev in range(s - 1, -1, -1):
        theta_p = (1.0 - params.entrainment) * theta_p + params.entrainment * state.theta[lev]
        qv_p = (1.0 - params.entrainment) * qv_p + params.entrainment * state.qv[lev]
        t_p = theta_p * pi[lev]
        excess = jnp.maximum(qv_p - saturation_mixing_ratio(t_p, state.p_mid[lev]), 0.0)
        theta_p = theta_p + alhc / cp * excess / pi[lev]
        qv_p = qv_p - excess
        buoyant = theta_p * pi[lev] - state.t[lev] > params.buoyancy_trig
        rising = rising & buoyant
        top = jnp.where(rising, lev, top)
        condensed = condensed + jnp.where(rising, excess, 0.0)

    rose = triggered & (top < s)
    supply = mu * state.qv[s] * mass[s]
    total = jnp.where(rose, jnp.minimum(mu * condensed * mass[s], supply), 0.0)

    below = jnp.minimum(top + 1, s)

    def take(field, level):
        return jnp.take_along_axis(field, level[None], axis=0)[0]

    def heating_cap(level):
        # condensate mass whose latent heat warms ``level`` by dtheta_max_conv
        return params.dtheta_max_conv * cp * take(pi, level) * take(mass, level) / alhc

    detrain_top = jnp.minimum(params.detrain_top_frac * total, heating_cap(top))
    detrain_below = jnp.minimum((1.0 - params.detrain_top_frac) * total, heating_cap(below))
    return ConvectionResult(
        triggered=triggered,
        top_level=jnp.where(rose, top, s).astype(jnp.int32),
        detrain_top=jnp.where(rose, detrain_top, 0.0),
        detrain_below=jnp.where(rose, detrain_below, 0.0),
    )


def apply_convection(state: ModelState, result: ConvectionResult) -> ModelState:
    """
    Moves the detrained condensate from surface vapour into cloud water at the
    plume top and the level below, with the matching latent heating.
    """
    nz = state.nz
    s = nz - 1
    mass = state.layer_thickness / grav
    pi = exner(state.p_mid)
    levels = jnp.arange(nz)[:, None, None]
    below = jnp.minimum(result.top_level + 1, s)

    added = (jnp.where(levels == result.top_level[None], result.detrain_top[None], 0.0)
             + jnp.where(levels == below[None], result.detrain_below[None], 0.0))
    dq = added / mass
    qc = state.qc + dq
    theta = state.theta + alhc / cp * dq / pi
    qv = state.qv.at[s].add(-result.condensate / mass[s])
    return state.replace(qv=jnp.maximum(qv, 0.0), qc=qc, theta=theta)


def deep_convection(state: ModelState, params: VerticalParameters, dt):
    """
    Trigger, plume and detrainment for every column, followed by the optional
    overturning of triggered columns.

    Returns:
        state: Updated state (conv_mask, conv_top_level and conv_condensate set)
        result: ConvectionResult
        trigger: TriggerFields, for the ascent and instability statistics
    """
    trigger = convective_trigger(state, params)
    result = entraining_plume(state, trigger.triggered, params, dt)
    state = apply_convection(state, result)
    if params.enable_convective_mixing:
        state = convective_mixing(state, trigger.triggered, params, dt)
    state = state.replace(
        conv_mask=result.triggered.astype(state.conv_mask.dtype),
        conv_top_level=result.top_level,
        conv_condensate=result.condensate,
    )
    return state, result, trigger


def convective_mixing(state: ModelState, triggered, params: VerticalParameters, dt) -> ModelState:
    """
    Overturning of triggered columns: pressure-weighted mixing of adjacent
    level pairs from the surface up to level 1, condensate at 0.6 of the rate.
    Column integrals of theta and all water species are conserved.
    """
    mu = lifted_fraction(params, dt)
    if mu <= 0:
        return state
    rate = jnp.where(triggered, mu, 0.0)
    return mix_pairs(state, levels=range(state.nz - 1, 1, -1), rate=rate, condensate_rate=0.6 * rate)


def mix_pairs(state: ModelState, levels, rate, condensate_rate=None) -> ModelState:
    """
    Relaxes each (lev - 1, lev) pair toward its pressure-weighted mean, in the
    order given by ``levels``. ``rate`` may be a scalar or a per-column
    array, or a function of the level and the partially mixed fields
    returning one.
    """
    dp = state.layer_thickness
    fields = {'theta': state.theta, 'qv': state.qv}
    if condensate_rate is not None:
        fields.update(qc=state.qc, qi=state.qi, qr=state.qr)
    for lev in levels:
        r = rate(lev, fields) if callable(rate) else rate
        rc = condensate_rate(lev, fields) if callable(condensate_rate) else condensate_rate
        dp_a = dp[lev - 1]
        dp_b = dp[lev]
        denom = jnp.maximum(dp_a + dp_b, 1e-6)
        for name, field in fields.items():
            frac = r if name in ('theta', 'qv') else rc
            mean = (field[lev - 1] * dp_a + field[lev] * dp_b) / denom
            field = field.at[lev - 1].add(frac * (mean - field[lev - 1]))
            field = field.at[lev].add(frac * (mean - field[lev]))
            fields[name] = field
    return state.replace(**fields)
