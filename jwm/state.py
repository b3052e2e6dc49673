"""
Date: 2026-02-11
Prognostic and derived fields of the five-level core.
"""
import jax.numpy as jnp
import numpy as np
import tree_math

from jwm import physical_constants as pc
from jwm.errors import ConfigurationError, NumericalHealthError
from jwm.grid import Grid

WATER_SPECIES = ("qv", "qc", "qi", "qr")
PROGNOSTIC_3D = ("u", "v", "theta") + WATER_SPECIES
PROGNOSTIC_2D = ("ps", "ts", "soil_w", "precip_rate", "precip_accum")


@tree_math.struct
class ModelState:
    # Vertical coordinate, shared by all columns
    sigma_half: jnp.ndarray # (nz+1,)

    # Prognostic level fields (nz, ny, nx)
    u: jnp.ndarray # Zonal wind (m/s)
    v: jnp.ndarray # Meridional wind (m/s)
    theta: jnp.ndarray # Potential temperature (K)
    qv: jnp.ndarray # Water vapour mixing ratio (kg/kg)
    qc: jnp.ndarray # Cloud liquid mixing ratio (kg/kg)
    qi: jnp.ndarray # Cloud ice mixing ratio (kg/kg)
    qr: jnp.ndarray # Rain mixing ratio (kg/kg)

    # Surface fields (ny, nx)
    ps: jnp.ndarray # Surface pressure (Pa)
    ts: jnp.ndarray # Surface temperature (K)
    soil_w: jnp.ndarray # Soil water (kg/m^2)
    soil_cap: jnp.ndarray # Soil water capacity (kg/m^2)
    precip_rate: jnp.ndarray # Surface precipitation rate (mm/h)
    precip_accum: jnp.ndarray # Accumulated precipitation (mm)
    land_mask: jnp.ndarray # 1 over land, 0 over ocean
    sst: jnp.ndarray # Current climatological SST (K)
    sea_ice: jnp.ndarray # Current climatological sea ice fraction
    albedo: jnp.ndarray # Climatological surface albedo, 0 where unknown

    # Derived by hydrostatic reconstruction
    p_half: jnp.ndarray # (nz+1, ny, nx) interface pressure (Pa)
    p_mid: jnp.ndarray # (nz, ny, nx) level pressure (Pa)
    t: jnp.ndarray # (nz, ny, nx) temperature (K)
    tv: jnp.ndarray # (nz, ny, nx) virtual temperature (K)
    phi_half: jnp.ndarray # (nz+1, ny, nx) interface geopotential (m^2/s^2)
    phi_mid: jnp.ndarray # (nz, ny, nx) level geopotential (m^2/s^2)

    # Derived by the vertical and mass stages
    omega: jnp.ndarray # (nz+1, ny, nx) interface vertical velocity (Pa/s), positive downward
    dps_dt_raw: jnp.ndarray # Mass-flux-divergence tendency before clamping (Pa/s)
    dps_dt_applied: jnp.ndarray # Realized surface pressure tendency (Pa/s)
    conv_mask: jnp.ndarray # 1 where the column triggered deep convection
    conv_top_level: jnp.ndarray # Plume top level, nz-1 where no plume rose
    conv_condensate: jnp.ndarray # Condensate detrained this step (kg/m^2)

    # Cloud memory carried between diagnostics calls
    cloud_low_cov: jnp.ndarray
    cloud_high_cov: jnp.ndarray
    conv_anvil: jnp.ndarray

    @classmethod
    def zeros(cls, grid: Grid, sigma_half=None) -> 'ModelState':
        """Allocate a resting, isothermal-in-theta state on ``grid``."""
        sigma_half = jnp.asarray(pc.sigma_half if sigma_half is None else sigma_half)
        if sigma_half.ndim != 1 or not bool(np.all(np.diff(np.asarray(sigma_half)) > 0)):
            raise ConfigurationError("sigma_half must be a strictly increasing 1-d array")
        nz = sigma_half.shape[0] - 1
        xy = grid.dims
        zxy = (nz,) + xy
        hxy = (nz + 1,) + xy
        return cls(
            sigma_half=sigma_half,
            u=jnp.zeros(zxy),
            v=jnp.zeros(zxy),
            theta=jnp.full(zxy, 290.0),
            qv=jnp.zeros(zxy),
            qc=jnp.zeros(zxy),
            qi=jnp.zeros(zxy),
            qr=jnp.zeros(zxy),
            ps=jnp.full(xy, 101325.0),
            ts=jnp.full(xy, 288.0),
            soil_w=jnp.zeros(xy),
            soil_cap=jnp.zeros(xy),
            precip_rate=jnp.zeros(xy),
            precip_accum=jnp.zeros(xy),
            land_mask=jnp.zeros(xy),
            sst=jnp.full(xy, 300.0),
            sea_ice=jnp.zeros(xy),
            albedo=jnp.zeros(xy),
            p_half=jnp.zeros(hxy),
            p_mid=jnp.zeros(zxy),
            t=jnp.full(zxy, 280.0),
            tv=jnp.full(zxy, 280.0),
            phi_half=jnp.zeros(hxy),
            phi_mid=jnp.zeros(zxy),
            omega=jnp.zeros(hxy),
            dps_dt_raw=jnp.zeros(xy),
            dps_dt_applied=jnp.zeros(xy),
            conv_mask=jnp.zeros(xy),
            conv_top_level=jnp.full(xy, nz - 1, dtype=jnp.int32),
            conv_condensate=jnp.zeros(xy),
            cloud_low_cov=jnp.zeros(xy),
            cloud_high_cov=jnp.zeros(xy),
            conv_anvil=jnp.zeros(xy),
        )

    @property
    def nz(self):
        return self.theta.shape[0]

    @property
    def layer_thickness(self):
        """Pressure thickness of each level (Pa), (nz, ny, nx)."""
        return self.p_half[1:] - self.p_half[:-1]

    def clip_water(self) -> 'ModelState':
        """Clip all mixing ratios to be non-negative."""
        return self.replace(**{name: jnp.maximum(getattr(self, name), 0.0) for name in WATER_SPECIES})

    def column_water(self):
        """Column-integrated total water (kg/m^2), (ny, nx)."""
        total = self.qv + self.qc + self.qi + self.qr
        return jnp.sum(total * self.layer_thickness, axis=0) / pc.grav

    def check_finite(self, strict=False):
        """Names of fields holding NaN or Inf.

        With ``strict=True`` a non-empty result raises NumericalHealthError.
        """
        bad = [name for name, value in self.asdict().items()
               if jnp.issubdtype(value.dtype, jnp.floating) and not bool(jnp.all(jnp.isfinite(value)))]
        if strict and bad:
            raise NumericalHealthError(f"non-finite values in {', '.join(bad)}")
        return bad
