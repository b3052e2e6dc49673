'''
Date: 2026-02-18
Export of the current core state to xarray for analysis and netCDF output.
'''
import jax
import numpy as np

from jwm.state import PROGNOSTIC_3D

# (units, description) of exported variables
UNITS = {
    "ps": ("Pa", "surface pressure"),
    "ts": ("K", "surface temperature"),
    "soil_w": ("kg/m^2", "soil water"),
    "precip_rate": ("mm/h", "surface precipitation rate"),
    "precip_accum": ("mm", "accumulated precipitation"),
    "land_mask": ("1", "land/sea mask"),
    "sst": ("K", "climatological sea surface temperature"),
    "sea_ice": ("1", "sea ice fraction"),
    "conv_mask": ("1", "deep convection triggered"),
    "conv_condensate": ("kg/m^2", "detrained convective condensate"),
    "cloud": ("1", "total cloud cover"),
    "cloud_low": ("1", "low cloud cover"),
    "cloud_high": ("1", "high cloud cover"),
    "cwp_low": ("kg/m^2", "low cloud water path"),
    "cwp_high": ("kg/m^2", "high condensate path"),
    "tau_low": ("1", "low cloud optical depth"),
    "tau_high": ("1", "high cloud optical depth"),
    "rh": ("1", "relative humidity of the lowest level"),
    "rh_upper": ("1", "relative humidity of the upper level"),
    "omega_lower": ("Pa/s", "lowest level vertical velocity"),
    "omega_upper": ("Pa/s", "upper level vertical velocity"),
    "vort": ("1/s", "relative vorticity"),
    "div": ("1/s", "divergence"),
    "u": ("m/s", "zonal wind"),
    "v": ("m/s", "meridional wind"),
    "theta": ("K", "potential temperature"),
    "t": ("K", "temperature"),
    "qv": ("kg/kg", "water vapour mixing ratio"),
    "qc": ("kg/kg", "cloud liquid mixing ratio"),
    "qi": ("kg/kg", "cloud ice mixing ratio"),
    "qr": ("kg/kg", "rain mixing ratio"),
}


def _attrs(name):
    if name not in UNITS and name.endswith(("_lower", "_upper")):
        name = name[:-len("_lower")]
    if name not in UNITS:
        return {}
    units, description = UNITS[name]
    return {"units": units, "description": description}


def fields_to_xarray(core, volumes=PROGNOSTIC_3D + ("t",)):
    """Converts the current fields of a READY core to an xarray.Dataset.

    Args:
        core: WeatherCore
        volumes: Names of 3-d fields to include on the ``level`` dimension

    Returns:
        `xarray.Dataset` with ``lat``/``lon`` (and ``level``) coordinates and
        the model time in seconds as the ``time_utc`` attribute.
    """
    import xarray as xr

    if core.state is None:
        raise RuntimeError("weather core is not initialized")

    grid = core.grid
    sigma_half = np.asarray(core.state.sigma_half)
    coords = {
        "lat": ("lat", np.asarray(grid.lat_deg), {"units": "degrees_north"}),
        "lon": ("lon", np.asarray(grid.lon_deg), {"units": "degrees_east"}),
        "level": ("level", 0.5 * (sigma_half[:-1] + sigma_half[1:]), {"description": "layer-mid sigma"}),
    }

    data_vars = {}
    for name, value in jax.device_get(core.fields()).items():
        data_vars[name] = (("lat", "lon"), np.asarray(value), _attrs(name))
    for name in volumes:
        data_vars[f"{name}_3d"] = (("level", "lat", "lon"), np.asarray(core.volume(name)), _attrs(name))

    ds = xr.Dataset(data_vars, coords=coords)
    ds.attrs.update(
        time_utc=core.time_utc,
        step_count=core.step_count,
        seed=core.seed,
        dt=core.dt,
    )
    return ds
