"""
Date: 2026-02-11
Smoothing filters: the zonal 1-2-1 polar filter used by the dynamics and
advection, and the separable box smoother used by nudging.
"""
import jax.numpy as jnp

from jwm.grid import Grid


def polar_filter_passes(grid: Grid, lat_start_deg, base_passes, weight_scale, extra_passes=0):
    """
    Number of filter passes per row: ``base + floor(scale * w) + extra`` for
    rows poleward of ``lat_start_deg`` and zero elsewhere, where ``w`` is the
    grid's polar weight.

    Returns:
        passes: int32 array of shape (ny,)
    """
    passes = base_passes + jnp.floor(weight_scale * grid.polar_weight).astype(jnp.int32) + extra_passes
    return jnp.where(jnp.abs(grid.lat_deg) >= lat_start_deg, passes, 0)


def zonal_binomial_filter(field, passes, max_passes):
    """
    Applies a periodic 1-2-1 smoother along longitude a per-row number of times.

    Args:
        field: Array of shape (..., ny, nx)
        passes: Per-row pass counts (ny,), may be traced
        max_passes: Static upper bound on ``passes``

    Returns:
        Filtered field, same shape as ``field``
    """
    rows = passes[:, None]
    for n in range(max_passes):
        smoothed = 0.25 * jnp.roll(field, 1, axis=-1) + 0.5 * field + 0.25 * jnp.roll(field, -1, axis=-1)
        field = jnp.where(n < rows, smoothed, field)
    return field


def box_smooth(field, smooth_lon, smooth_lat):
    """
    Two-pass separable box average over a (smooth_lat x smooth_lon) window,
    periodic in longitude and edge-clamped in latitude.
    """
    lon_half = max(1, int(smooth_lon)) // 2
    lat_half = max(1, int(smooth_lat)) // 2
    if lon_half == 0 and lat_half == 0:
        return field

    out = sum(jnp.roll(field, shift, axis=-1) for shift in range(-lon_half, lon_half + 1))
    out = out / (2 * lon_half + 1)

    ny = field.shape[-2]
    rows = jnp.arange(ny)
    acc = jnp.zeros_like(out)
    for shift in range(-lat_half, lat_half + 1):
        acc = acc + jnp.take(out, jnp.clip(rows + shift, 0, ny - 1), axis=-2)
    return acc / (2 * lat_half + 1)
