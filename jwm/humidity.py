'''
Date: 2026-02-11
Saturation mixing ratio, relative humidity and the Exner function.
'''
import jax.numpy as jnp

from jwm.physical_constants import akap, eps_vap, p0, tfreeze


def saturation_mixing_ratio(temperature, pressure):
    """
    Computes the saturation mixing ratio over liquid water (Magnus form).

    Args:
        temperature: Absolute temperature [K], clamped to [180, 330]
        pressure: Pressure [Pa]

    Returns:
        qs: Saturation mixing ratio [kg/kg], capped at 0.2
    """
    tc = jnp.clip(temperature, 180.0, 330.0) - tfreeze
    es = 610.94 * jnp.exp(17.625 * tc / (tc + 243.04))
    es = jnp.minimum(es, 0.95 * pressure)
    qs = eps_vap * es / jnp.maximum(1.0, pressure - es)
    return jnp.minimum(qs, 0.2)


def relative_humidity(qv, temperature, pressure, rh_max=2.0):
    """
    Relative humidity as the ratio of vapour to saturation mixing ratio,
    clamped to [0, rh_max].
    """
    qs = saturation_mixing_ratio(temperature, pressure)
    return jnp.clip(qv / jnp.maximum(qs, 1e-8), 0.0, rh_max)


def exner(pressure, reference=p0):
    """(p / p0) ** (Rd / cp)"""
    return (pressure / reference) ** akap
