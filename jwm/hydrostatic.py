"""
Date: 2026-02-11
Hydrostatic reconstruction: level pressures, temperature and geopotential
from surface pressure and potential temperature.
"""
import jax.numpy as jnp

from jwm.params import HydrostaticParameters
from jwm.physical_constants import rgas, virtual_coeff
from jwm.humidity import exner
from jwm.state import ModelState


def update_hydrostatic(state: ModelState, params: HydrostaticParameters = HydrostaticParameters()) -> ModelState:
    """
    Recomputes every pressure-derived field of ``state``.

    Half-level pressure is ``p_top + (ps - p_top) * sigma``, level pressure the
    geometric mean of its interfaces. Geopotential is integrated from the
    surface (phi = 0) upward through the log-pressure thickness of each layer
    using the virtual temperature. The result depends only on ``ps``,
    ``theta`` and ``qv``, so repeated calls are idempotent.

    Args:
        state: Model state
        params: Reference and model-top pressures

    Returns:
        state with p_half, p_mid, t, tv, phi_half and phi_mid replaced
    """
    p_top = params.p_top
    ps = jnp.maximum(state.ps, p_top + params.ps_floor_offset)
    sigma = state.sigma_half[:, None, None]
    p_half = p_top + (ps[None] - p_top) * sigma

    p_bounded = jnp.maximum(p_half, p_top)
    p_mid = jnp.sqrt(p_bounded[:-1] * p_bounded[1:])

    t = state.theta * exner(jnp.maximum(p_mid, p_top), params.p0)
    tv = t * (1.0 + virtual_coeff * state.qv)

    # thickness of each layer, summed from the surface upward
    dphi = rgas * tv * jnp.log(p_bounded[1:] / p_bounded[:-1])
    phi_above_surface = jnp.cumsum(dphi[::-1], axis=0)[::-1]
    phi_half = jnp.concatenate([phi_above_surface, jnp.zeros_like(ps)[None]], axis=0)
    phi_mid = 0.5 * (phi_half[:-1] + phi_half[1:])

    return state.replace(p_half=p_half, p_mid=p_mid, t=t, tv=tv, phi_half=phi_half, phi_mid=phi_mid)
