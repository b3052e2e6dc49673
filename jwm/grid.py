"""
Date: 2026-02-11
Uniform latitude/longitude mesh with per-row metric factors, and the
finite-difference stencils shared by the dynamics and diagnostics.

Fields are laid out as (..., ny, nx). Row 0 is the northernmost row, so a
"north" neighbour of row j is row j - 1. Longitude is periodic, latitude is
edge-clamped.
"""
import jax.numpy as jnp
import numpy as np
import tree_math

from jwm.physical_constants import omega, meters_per_degree


@tree_math.struct
class Grid:
    nx: int
    ny: int
    lat_deg: jnp.ndarray # (ny,)
    lon_deg: jnp.ndarray # (nx,)
    cos_lat: jnp.ndarray # (ny,), floored to avoid division by zero at the poles
    sin_lat: jnp.ndarray # (ny,)
    inv_dx: jnp.ndarray # (ny,) inverse east-west spacing (1/m)
    inv_dy: jnp.ndarray # (ny,) inverse north-south spacing (1/m)
    coriolis: jnp.ndarray # (ny,) 2 Omega sin(lat)
    polar_weight: jnp.ndarray # (ny,) 0 equatorward of polar_lat_start_deg, 1 at the pole
    cell_lon_deg: float
    cell_lat_deg: float
    min_dx: float
    polar_lat_start_deg: float

    @classmethod
    def create(cls, nx=180, ny=90, min_dx=80000.0, polar_lat_start_deg=60.0) -> 'Grid':
        """Build the mesh and its cached per-row factors.

        Args:
            nx: Number of longitude cells.
            ny: Number of latitude cells.
            min_dx: Floor on the east-west cell spacing (m), keeps the
                zonal CFL limit bounded near the poles.
            polar_lat_start_deg: Latitude where the polar filter weight starts.
        """
        cell_lon_deg = 360.0 / nx
        cell_lat_deg = 180.0 / ny
        lat_deg = 90.0 - (np.arange(ny) + 0.5) * cell_lat_deg
        lon_deg = -180.0 + (np.arange(nx) + 0.5) * cell_lon_deg
        lat_rad = np.deg2rad(lat_deg)
        cos_lat = np.maximum(np.cos(lat_rad), 1e-4)
        sin_lat = np.sin(lat_rad)

        dx = np.maximum(min_dx, meters_per_degree * cell_lon_deg * cos_lat)
        dy = meters_per_degree * cell_lat_deg
        polar_weight = np.clip((np.abs(lat_deg) - polar_lat_start_deg) / (90.0 - polar_lat_start_deg), 0.0, 1.0)

        return cls(
            nx=nx,
            ny=ny,
            lat_deg=jnp.asarray(lat_deg),
            lon_deg=jnp.asarray(lon_deg),
            cos_lat=jnp.asarray(cos_lat),
            sin_lat=jnp.asarray(sin_lat),
            inv_dx=jnp.asarray(1.0 / dx),
            inv_dy=jnp.asarray(np.full(ny, 1.0 / dy)),
            coriolis=jnp.asarray(2.0 * omega * sin_lat),
            polar_weight=jnp.asarray(polar_weight),
            cell_lon_deg=cell_lon_deg,
            cell_lat_deg=cell_lat_deg,
            min_dx=min_dx,
            polar_lat_start_deg=polar_lat_start_deg,
        )

    @property
    def dims(self):
        return (self.ny, self.nx)

    def area_weights(self):
        """cos(lat) weights broadcast to (ny, nx)."""
        return jnp.broadcast_to(self.cos_lat[:, None], self.dims)

    def global_mean(self, field):
        """Area-weighted mean over the last two axes."""
        w = self.area_weights()
        return jnp.sum(field * w, axis=(-2, -1)) / jnp.sum(w)


def north(field):
    """Value of the northern neighbour, clamped at the first row."""
    return jnp.concatenate([field[..., :1, :], field[..., :-1, :]], axis=-2)


def south(field):
    """Value of the southern neighbour, clamped at the last row."""
    return jnp.concatenate([field[..., 1:, :], field[..., -1:, :]], axis=-2)


def east(field):
    return jnp.roll(field, -1, axis=-1)


def west(field):
    return jnp.roll(field, 1, axis=-1)


def ddx(field, grid: Grid):
    return (east(field) - west(field)) * 0.5 * grid.inv_dx[:, None]


def ddy(field, grid: Grid):
    return (north(field) - south(field)) * 0.5 * grid.inv_dy[:, None]


def laplacian(field, grid: Grid):
    inv_dx2 = (grid.inv_dx ** 2)[:, None]
    inv_dy2 = (grid.inv_dy ** 2)[:, None]
    return (east(field) + west(field) - 2 * field) * inv_dx2 + (north(field) + south(field) - 2 * field) * inv_dy2


def _ddy_cos(field, grid: Grid):
    # d(field cos(lat))/dy / cos(lat)
    cos = grid.cos_lat[:, None]
    weighted = field * cos
    return (north(weighted) - south(weighted)) * 0.5 * grid.inv_dy[:, None] / cos


def divergence(u, v, grid: Grid):
    """Horizontal divergence on the sphere (1/s, or flux units / m)."""
    return ddx(u, grid) + _ddy_cos(v, grid)


def vorticity(u, v, grid: Grid):
    """Relative vorticity (1/s)."""
    return ddx(v, grid) - _ddy_cos(u, grid)
