"""
Date: 2026-02-13
Climatology ingestion: monthly SST, sea ice, and optional sea-level
pressure / 2 m temperature, plus static soil capacity, albedo, elevation
and the land/sea mask derived from them.

Three sources are supported:
    * ``climatology_from_file``: a netCDF file read with xarray
    * ``climatology_from_manifest``: gray-encoded monthly images described by
      a ``manifest.json``; image decoding is delegated to a ``read_image``
      callable returning the pixel array
    * ``fallback_climatology``: an analytic zonally-symmetric climatology used
      whenever an asset load fails
"""
import json
import logging
from pathlib import Path
from typing import Callable, Optional

import jax.numpy as jnp
import numpy as np
import tree_math

from jwm.errors import ClimatologyLoadError
from jwm.grid import Grid

logger = logging.getLogger(__name__)

MONTHS = 12
SECONDS_PER_DAY = 86400.0
DAYS_PER_YEAR = 365.0

# (source name, threshold) in order of preference for the land/sea mask
LAND_MASK_CANDIDATES = (("soil_cap", 0.01), ("elev", 5.0), ("albedo", 0.08))
LAND_FRACTION_RANGE = (0.05, 0.95)


@tree_math.struct
class Climatology:
    sst_months: jnp.ndarray # (12, ny, nx) K
    ice_months: jnp.ndarray # (12, ny, nx) fraction
    slp_months: Optional[jnp.ndarray] # (12, ny, nx) Pa, None when unavailable
    t2m_months: Optional[jnp.ndarray] # (12, ny, nx) K, None when unavailable
    soil_cap: jnp.ndarray # (ny, nx) kg/m^2
    albedo: jnp.ndarray # (ny, nx), 0 where unknown
    elev: jnp.ndarray # (ny, nx) m
    land_mask: jnp.ndarray # (ny, nx) 0/1
    used_fallback: bool

    @property
    def has_slp(self):
        return self.slp_months is not None

    @property
    def has_t2m(self):
        return self.t2m_months is not None


@tree_math.struct
class ClimatologyNow:
    """Climatology interpolated to the current model time."""
    sst: jnp.ndarray
    sea_ice: jnp.ndarray
    slp: Optional[jnp.ndarray]
    t2m: Optional[jnp.ndarray]


def _smoothstep01(x):
    x = np.clip(x, 0.0, 1.0)
    return x * x * (3 - 2 * x)


def fallback_climatology(grid: Grid) -> Climatology:
    """
    Analytic climatology: a seasonal SST cycle decreasing poleward, opposite
    in phase between hemispheres, and sea ice poleward of 60 degrees. No land.
    """
    lat = np.asarray(grid.lat_deg)
    lat_rad = np.deg2rad(lat)
    lat_norm = np.minimum(1.0, np.abs(lat) / 90.0)
    base = 300.0 - 28.0 * lat_norm ** 1.2 - 6.0 * np.sin(lat_rad) ** 2
    amp = 2.0 + 6.0 * (1.0 - lat_norm)
    ice_base = np.clip((np.abs(lat) - 60.0) / 25.0, 0.0, 1.0)

    month = np.arange(MONTHS)[:, None]
    phase = 2 * np.pi * month / MONTHS + np.where(lat >= 0, 0.0, np.pi)[None, :]
    seasonal = np.cos(phase)
    sst = np.clip(base[None, :] + amp[None, :] * seasonal, 271.15, 307.15)
    ice = np.clip(ice_base[None, :] * (0.5 + 0.5 * seasonal), 0.0, 1.0)

    shape = (MONTHS, grid.ny, grid.nx)
    zeros = jnp.zeros(grid.dims)
    return Climatology(
        sst_months=jnp.asarray(np.broadcast_to(sst[:, :, None], shape)),
        ice_months=jnp.asarray(np.broadcast_to(ice[:, :, None], shape)),
        slp_months=None,
        t2m_months=None,
        soil_cap=zeros,
        albedo=zeros,
        elev=zeros,
        land_mask=zeros,
        used_fallback=True,
    )


def derive_land_mask(soil_cap=None, elev=None, albedo=None):
    """
    Land/sea mask from the first candidate field whose thresholded land
    fraction is plausible (between 5% and 95%); falls back to the first
    available candidate otherwise.

    Returns:
        mask: float array of 0/1, or None when no candidate is available
        source: name of the field the mask was derived from
    """
    sources = {"soil_cap": soil_cap, "elev": elev, "albedo": albedo}
    first = None
    for name, threshold in LAND_MASK_CANDIDATES:
        field = sources[name]
        if field is None:
            continue
        mask = (np.asarray(field) > threshold).astype(np.float32)
        if first is None:
            first = (mask, name)
        if LAND_FRACTION_RANGE[0] <= mask.mean() <= LAND_FRACTION_RANGE[1]:
            return jnp.asarray(mask), name
    if first is None:
        return None, None
    return jnp.asarray(first[0]), first[1]


def month_weights(time_utc):
    """Bracketing months and interpolation weight for a UTC time in seconds."""
    day_of_year = (time_utc / SECONDS_PER_DAY) % DAYS_PER_YEAR
    month_float = day_of_year / DAYS_PER_YEAR * MONTHS
    m0 = int(np.floor(month_float)) % MONTHS
    return m0, (m0 + 1) % MONTHS, month_float - np.floor(month_float)


def interpolate_month(climatology: Climatology, time_utc) -> ClimatologyNow:
    """Linear interpolation between monthly means at ``time_utc`` (s)."""
    m0, m1, f = month_weights(time_utc)

    def lerp(months):
        if months is None:
            return None
        return months[m0] + (months[m1] - months[m0]) * f

    return ClimatologyNow(
        sst=lerp(climatology.sst_months),
        sea_ice=jnp.clip(lerp(climatology.ice_months), 0.0, 1.0),
        slp=lerp(climatology.slp_months),
        t2m=lerp(climatology.t2m_months),
    )


def _assemble(grid, sst_months, ice_months=None, slp_months=None, t2m_months=None,
              soil_cap=None, albedo=None, elev=None, land_mask=None):
    monthly = (MONTHS, grid.ny, grid.nx)

    def checked(name, value, shape):
        if value is None:
            return None
        value = np.asarray(value, dtype=np.float32)
        if value.shape != shape:
            raise ClimatologyLoadError(f"{name} has shape {value.shape}, expected {shape}")
        return jnp.asarray(value)

    sst_months = checked("sst", sst_months, monthly)
    ice_months = checked("sea_ice", ice_months, monthly)
    slp_months = checked("slp", slp_months, monthly)
    t2m_months = checked("t2m", t2m_months, monthly)
    soil_cap = checked("soil_cap", soil_cap, grid.dims)
    albedo = checked("albedo", albedo, grid.dims)
    elev = checked("elev", elev, grid.dims)
    land_mask = checked("land_mask", land_mask, grid.dims)

    if land_mask is None:
        land_mask, source = derive_land_mask(soil_cap, elev, albedo)
        if land_mask is not None:
            logger.info("land mask derived from %s (land fraction %.3f)", source, float(land_mask.mean()))
    zeros = jnp.zeros(grid.dims)
    return Climatology(
        sst_months=sst_months,
        ice_months=ice_months if ice_months is not None else jnp.zeros(monthly),
        slp_months=slp_months,
        t2m_months=t2m_months,
        soil_cap=soil_cap if soil_cap is not None else zeros,
        albedo=albedo if albedo is not None else zeros,
        elev=elev if elev is not None else zeros,
        land_mask=land_mask if land_mask is not None else zeros,
        used_fallback=False,
    )


def climatology_from_file(filename, grid: Grid) -> Climatology:
    """
    Reads a climatology from a netCDF file already on the model grid.

    Expected variables: ``sst`` (month, lat, lon) and optionally ``icec``,
    ``slp``, ``t2m`` (month, lat, lon) and ``soil_cap``, ``alb``, ``orog``,
    ``lsm`` (lat, lon). Latitude is flipped to north-first if needed.
    """
    import xarray as xr

    try:
        ds = xr.open_dataset(filename)
    except (OSError, ValueError) as err:
        raise ClimatologyLoadError(f"cannot open {filename}: {err}") from err
    with ds:
        if "sst" not in ds:
            raise ClimatologyLoadError(f"{filename} has no 'sst' variable")
        if "lat" in ds.coords and ds["lat"].size > 1 and float(ds["lat"][0]) < float(ds["lat"][-1]):
            ds = ds.isel(lat=slice(None, None, -1))

        def read(name):
            return np.asarray(ds[name].values) if name in ds else None

        lsm = read("lsm")
        return _assemble(
            grid,
            sst_months=read("sst"),
            ice_months=read("icec"),
            slp_months=read("slp"),
            t2m_months=read("t2m"),
            soil_cap=read("soil_cap"),
            albedo=read("alb"),
            elev=read("orog"),
            land_mask=None if lsm is None else (lsm > 0.5).astype(np.float32),
        )


def decode_gray(values, decode_min, decode_max):
    """Maps 8-bit gray levels linearly onto [decode_min, decode_max]."""
    return decode_min + (decode_max - decode_min) * (np.asarray(values, dtype=np.float64) / 255.0)


def sample_image_to_grid(pixels, nx, ny, decode_min, decode_max):
    """
    Bilinearly resamples an equirectangular gray image onto an (ny, nx) grid.

    Row 0 of the image is the north edge; sampling wraps in x. Only the
    first channel of multi-channel images is used.

    Returns:
        float32 array of shape (ny, nx)
    """
    pixels = np.asarray(pixels)
    if pixels.ndim == 3:
        pixels = pixels[..., 0]
    if pixels.ndim != 2:
        raise ClimatologyLoadError(f"expected a 2-d image, got shape {pixels.shape}")
    img_h, img_w = pixels.shape
    values = decode_gray(pixels, decode_min, decode_max)

    y = np.arange(ny) / ny * (img_h - 1)
    y0 = np.floor(y).astype(int)
    y1 = np.minimum(img_h - 1, y0 + 1)
    ty = (y - y0)[:, None]

    x = np.arange(nx) / nx * (img_w - 1)
    x0 = np.floor(x).astype(int) % img_w
    x1 = (x0 + 1) % img_w
    tx = (x - np.floor(x))[None, :]

    top = values[y0][:, x0] * (1 - tx) + values[y0][:, x1] * tx
    bottom = values[y1][:, x0] * (1 - tx) + values[y1][:, x1] * tx
    return (top * (1 - ty) + bottom * ty).astype(np.float32)


def climatology_from_manifest(directory, grid: Grid, read_image: Callable) -> Climatology:
    """
    Builds a climatology from gray-encoded images listed in
    ``directory/manifest.json``.

    The manifest maps ``sst`` and ``seaIce`` to twelve monthly ``files`` with a
    ``decode`` range, ``albedo``/``topography``/``soilCap`` to a single
    ``file``, and ``optionalNudging.slp``/``optionalNudging.t2m`` to monthly
    files. Only the SST entry is required; optional entries that fail to load
    are skipped with a warning.

    Args:
        directory: Folder holding the manifest and images
        grid: Model grid
        read_image: Callable mapping a path to a pixel array (H, W[, C])
    """
    directory = Path(directory)
    try:
        manifest = json.loads((directory / "manifest.json").read_text())
    except (OSError, ValueError) as err:
        raise ClimatologyLoadError(f"cannot read manifest in {directory}: {err}") from err

    def load_one(entry, file_name):
        decode = entry["decode"]
        return sample_image_to_grid(read_image(directory / file_name), grid.nx, grid.ny,
                                    decode["min"], decode["max"])

    def load_monthly(entry):
        files = entry.get("files") or []
        if len(files) != MONTHS:
            raise ClimatologyLoadError(f"expected {MONTHS} monthly files, found {len(files)}")
        return np.stack([load_one(entry, name) for name in files])

    def optional(name, loader):
        if not loader[0]:
            return None
        try:
            return loader[1]()
        except (ClimatologyLoadError, OSError, ValueError, KeyError) as err:
            logger.warning("climatology field %s skipped: %s", name, err)
            return None

    sst_entry = manifest.get("sst")
    if not sst_entry:
        raise ClimatologyLoadError("manifest has no 'sst' entry")
    try:
        sst_months = load_monthly(sst_entry)
    except (OSError, ValueError, KeyError) as err:
        raise ClimatologyLoadError(f"cannot load SST images: {err}") from err

    nudging = manifest.get("optionalNudging") or {}
    single = {key: manifest.get(key) for key in ("albedo", "topography", "soilCap")}
    return _assemble(
        grid,
        sst_months=sst_months,
        ice_months=optional("seaIce", (manifest.get("seaIce"), lambda: load_monthly(manifest["seaIce"]))),
        slp_months=optional("slp", (nudging.get("slp"), lambda: load_monthly(nudging["slp"]))),
        t2m_months=optional("t2m", (nudging.get("t2m"), lambda: load_monthly(nudging["t2m"]))),
        albedo=optional("albedo", (single["albedo"], lambda: load_one(single["albedo"], single["albedo"]["file"]))),
        elev=optional("topography", (single["topography"],
                                     lambda: load_one(single["topography"], single["topography"]["file"]))),
        soil_cap=optional("soilCap", (single["soilCap"], lambda: load_one(single["soilCap"], single["soilCap"]["file"]))),
    )
