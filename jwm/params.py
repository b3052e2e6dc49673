"""
Date: 2026-02-11
Tunable coefficients for every stage of the weather core.

Each stage takes its own parameter struct. Structs are plain-valued
(python floats/ints/bools) so that stage functions can branch on flags
while parameters are closed over by ``jax.jit``.
"""
import dataclasses
import logging
from typing import Any, ClassVar, Mapping, Optional

import tree_math

from jwm import physical_constants as pc
from jwm.errors import ConfigurationError

logger = logging.getLogger(__name__)

DAY = 86400.0
HOUR = 3600.0

_warned_keys = set()


def _warn_once(key, message, *args):
    if key in _warned_keys:
        return
    _warned_keys.add(key)
    logger.warning(message, *args)


def _accepts(field_type, value):
    if field_type is bool:
        return isinstance(value, bool)
    if field_type is int:
        return isinstance(value, int) and not isinstance(value, bool)
    if field_type is float:
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if field_type is str:
        return isinstance(value, str)
    return True


class StageParameters:
    """Shared construction helpers for stage parameter structs.

    Subclasses declare ``_ranges`` (field -> (lo, hi), either bound may be
    None) and ``_choices`` (field -> allowed strings).
    """
    _ranges: ClassVar[dict] = {}
    _choices: ClassVar[dict] = {}

    @classmethod
    def default(cls):
        return cls()

    @classmethod
    def from_dict(cls, config: Optional[Mapping[str, Any]]):
        """Build from a mapping, dropping unknown keys and invalid values.

        Unknown keys, values of the wrong type and out-of-range values are
        logged once and the default is kept in their place.
        """
        if config is None:
            return cls.default()
        if not isinstance(config, Mapping):
            raise ConfigurationError(
                f"{cls.__name__} expects a mapping, got {type(config).__name__}")
        known = {f.name: f for f in dataclasses.fields(cls)}
        accepted = {}
        for key, value in config.items():
            field = known.get(key)
            if field is None:
                _warn_once((cls.__name__, key), "%s: unknown parameter %r ignored", cls.__name__, key)
                continue
            if not _accepts(field.type, value):
                _warn_once((cls.__name__, key, "type"), "%s: %s=%r has the wrong type, using default",
                           cls.__name__, key, value)
                continue
            if not cls._in_range(key, value):
                _warn_once((cls.__name__, key, "range"), "%s: %s=%r is out of range, using default",
                           cls.__name__, key, value)
                continue
            accepted[key] = float(value) if field.type is float else value
        return cls(**accepted)

    @classmethod
    def _in_range(cls, key, value):
        if key in cls._choices:
            return value in cls._choices[key]
        lo, hi = cls._ranges.get(key, (None, None))
        if lo is not None and value < lo:
            return False
        if hi is not None and value > hi:
            return False
        return True


@tree_math.struct
class HydrostaticParameters(StageParameters):
    p0: float = pc.p0 # Reference pressure for potential temperature (Pa)
    p_top: float = pc.p_top # Model-top pressure (Pa)
    ps_floor_offset: float = 100.0 # Minimum depth of the column above p_top (Pa)

    _ranges: ClassVar[dict] = {"p0": (1.0, None), "p_top": (0.0, None), "ps_floor_offset": (1.0, None)}


@tree_math.struct
class DynamicsParameters(StageParameters):
    max_wind: float = 150.0 # Wind speed cap (m/s)
    tau_drag_surface: float = 6 * DAY # Linear drag timescale at the lowest level (s)
    tau_drag_top: float = 20 * DAY # Linear drag timescale at the top level (s)
    nu_laplacian: float = 2e5 # Horizontal diffusion coefficient (m^2/s)
    polar_filter_lat_start_deg: float = 60.0 # Latitude poleward of which rows are filtered
    polar_filter_every_steps: int = 0 # Filter stride in steps, 0 disables
    extra_filter_every_steps: int = 0 # Stride of the extra passes, 0 disables
    extra_filter_passes: int = 2
    enable_metric_terms: bool = True

    _ranges: ClassVar[dict] = {
        "max_wind": (0.0, None),
        "tau_drag_surface": (1.0, None),
        "tau_drag_top": (1.0, None),
        "nu_laplacian": (0.0, None),
        "polar_filter_lat_start_deg": (0.0, 90.0),
        "polar_filter_every_steps": (0, None),
        "extra_filter_every_steps": (0, None),
        "extra_filter_passes": (0, 16),
    }


@tree_math.struct
class MassParameters(StageParameters):
    ps_min: float = 50000.0 # Lower surface pressure bound (Pa)
    ps_max: float = 110000.0 # Upper surface pressure bound (Pa)
    conserve_global_mean: bool = True
    max_abs_dps_dt: float = 1.0 # Maximum surface pressure tendency magnitude (Pa/s)
    bound_iterations: int = 4 # Clamp-and-redistribute iterations

    _ranges: ClassVar[dict] = {
        "ps_min": (pc.p_top, None),
        "ps_max": (pc.p_top, None),
        "max_abs_dps_dt": (0.0, None),
        "bound_iterations": (1, 32),
    }


@tree_math.struct
class AdvectionParameters(StageParameters):
    polar_lat_start_deg: float = 60.0
    enable_polar_filter: bool = True
    filter_moisture: bool = False # Also smooth water species at high latitude
    max_backtrace_cells: float = 2.0 # Displacement limit per step (cells)

    _ranges: ClassVar[dict] = {"polar_lat_start_deg": (0.0, 90.0), "max_backtrace_cells": (0.0, 8.0)}


@tree_math.struct
class VerticalParameters(StageParameters):
    enable_mixing: bool = True
    enable_convection: bool = True
    enable_convective_mixing: bool = True
    enable_vertical_advection: bool = True
    enable_omega_mass_fix: bool = True

    # Deep convection strength, fraction of the surface layer lifted per step
    mu0: float = 0.05
    tau_conv: float = 2 * HOUR

    # PBL mixing
    tau_pbl_unstable: float = 6 * HOUR
    tau_pbl_stable: float = 2 * DAY
    pbl_depth_frac: float = 0.35 # Fraction of surface-to-top depth inside the PBL
    max_mix_frac_pbl: float = 0.2
    pbl_taper: float = 0.85 # Mixing reduction toward the PBL top
    pbl_mix_condensate: bool = True
    pbl_cond_mix_scale: float = 0.35

    # Deep convection triggers
    rh_trig: float = 0.75
    rh_mid_min: float = 0.25
    omega_trig: float = 0.3 # Minimum ascent (-omega, Pa/s)
    instab_trig: float = 3.0 # Theta-e proxy difference surface minus mid level (K)
    qv_trig: float = 0.002
    thetae_coeff: float = 10.0
    thetae_qv_cap: float = 0.03

    # Plume
    entrainment: float = 0.2 # Environment fraction mixed into the parcel per level
    buoyancy_trig: float = 0.0 # Parcel minus environment temperature to keep rising (K)
    detrain_top_frac: float = 0.7 # Share of condensate detrained at the plume top
    dtheta_max_conv: float = 2.0 # Max theta change per step at each detrainment level (K)

    # PBL warm rain
    pbl_warm_rain: bool = True
    qc_auto0: float = 7e-4
    tau_auto: float = 4 * HOUR
    auto_max_frac: float = 0.2

    # Large-scale vertical advection
    vadv_cfl_fraction: float = 0.5
    vadv_dtheta_max: float = 1.0

    eps: float = pc.epsilon
    debug_conservation: bool = False
    water_residual_tolerance: float = 1e-3 # Column water residual reported above this (kg/m^2)

    _ranges: ClassVar[dict] = {
        "mu0": (0.0, 1.0),
        "tau_conv": (1.0, None),
        "tau_pbl_unstable": (1.0, None),
        "tau_pbl_stable": (1.0, None),
        "pbl_depth_frac": (0.0, 1.0),
        "max_mix_frac_pbl": (0.0, 1.0),
        "pbl_taper": (0.0, 1.0),
        "pbl_cond_mix_scale": (0.0, 1.0),
        "entrainment": (0.0, 1.0),
        "detrain_top_frac": (0.0, 1.0),
        "dtheta_max_conv": (0.0, None),
        "tau_auto": (1.0, None),
        "auto_max_frac": (0.0, 1.0),
        "vadv_cfl_fraction": (0.0, 1.0),
        "vadv_dtheta_max": (0.0, None),
    }


@tree_math.struct
class MicrophysicsParameters(StageParameters):
    enable: bool = True
    qc0: float = 1e-3 # Cloud water autoconversion threshold (kg/kg)
    qi0: float = 6e-4 # Cloud ice autoconversion threshold (kg/kg)
    k_auto: float = 3e-4 # Cloud water autoconversion rate (1/s)
    k_auto_ice: float = 8e-4 # Cloud ice autoconversion rate (1/s)
    k_auto_cold_boost: float = 3.0
    qc0_cold_reduce: float = 0.5
    auto_max_frac: float = 0.25
    precip_eff: float = 0.8
    tau_freeze: float = 5400.0
    tau_melt: float = 5400.0
    t_freeze: float = pc.tfreeze
    t_ice_full: float = 253.15 # Below this temperature condensate is all ice
    k_fall: float = 1 / HOUR # Rain fall fraction per second
    enable_flux_sedimentation: bool = True
    enable_ice_sedimentation: bool = True
    k_fall_ice: float = 1 / (6 * HOUR)
    enable_ice_melt_to_rain: bool = True
    tau_melt_ice_to_rain: float = HOUR
    tau_evap_cloud_min: float = 900.0
    tau_evap_cloud_max: float = 7200.0
    tau_evap_rain_min: float = 900.0
    tau_evap_rain_max: float = 28800.0
    dtheta_max_per_step: float = 1.0
    dtheta_max_per_step_conv: float = 2.5
    rh_evap0: float = 0.9
    rh_evap1: float = 0.3
    tau_ice_agg: float = 12 * HOUR
    ice_agg_max_frac: float = 0.05
    precip_rate_max: float = 200.0 # mm/h

    # Overrides in columns flagged convective
    enable_convective_outcome: bool = False
    conv_tau_evap_cloud_scale: float = 0.35
    conv_k_auto_scale: float = 2.0
    conv_precip_eff_boost: float = 0.15

    _ranges: ClassVar[dict] = {
        "qc0": (0.0, None),
        "qi0": (0.0, None),
        "k_auto": (0.0, None),
        "k_auto_ice": (0.0, None),
        "auto_max_frac": (0.0, 1.0),
        "precip_eff": (0.0, 1.0),
        "tau_freeze": (1.0, None),
        "tau_melt": (1.0, None),
        "k_fall": (0.0, None),
        "k_fall_ice": (0.0, None),
        "tau_melt_ice_to_rain": (1.0, None),
        "tau_evap_cloud_min": (1.0, None),
        "tau_evap_cloud_max": (1.0, None),
        "tau_evap_rain_min": (1.0, None),
        "tau_evap_rain_max": (1.0, None),
        "dtheta_max_per_step": (0.0, None),
        "dtheta_max_per_step_conv": (0.0, None),
        "tau_ice_agg": (1.0, None),
        "ice_agg_max_frac": (0.0, 1.0),
        "precip_rate_max": (0.0, None),
    }


@tree_math.struct
class RadiationParameters(StageParameters):
    enable: bool = True
    s0: float = pc.solc
    k_sw: float = 0.12 # Shortwave extinction per unit cloud optical depth
    albedo_ocean: float = 0.06
    albedo_land: float = 0.2
    albedo_sea_ice: float = 0.6
    eps0: float = 0.75 # Base effective emissivity
    k_wv: float = 12.0
    k_cld: float = 0.1
    tau_rad_lower: float = 2.5 * DAY
    tau_rad_upper: float = 1.5 * DAY
    teq_lower_eq: float = 288.0
    teq_lower_pole: float = 253.0
    teq_upper_eq: float = 255.0
    teq_upper_pole: float = 235.0
    teq_lat_shape: str = "sin2"
    heat_frac_lower: float = 0.65
    heat_frac_upper: float = 0.35
    dtheta_max_per_step: float = 1.0
    k_tau: float = 80.0 # Optical depth per kg/m^2 of condensate
    rad_ice_factor: float = 0.7
    enable_sigma_lw_profile: bool = True
    enable_sw_mass_distribution: bool = True

    _ranges: ClassVar[dict] = {
        "s0": (0.0, None),
        "albedo_ocean": (0.0, 1.0),
        "albedo_land": (0.0, 1.0),
        "albedo_sea_ice": (0.0, 1.0),
        "eps0": (0.0, 1.0),
        "tau_rad_lower": (1.0, None),
        "tau_rad_upper": (1.0, None),
        "dtheta_max_per_step": (0.0, None),
    }
    _choices: ClassVar[dict] = {"teq_lat_shape": ("sin2", "linear")}


@tree_math.struct
class SurfaceParameters(StageParameters):
    enable: bool = True
    rho_air: float = 1.2
    ce: float = 1.2e-3 # Bulk exchange coefficient for moisture
    ch: float = 1.0e-3 # Bulk exchange coefficient for heat
    wind_floor: float = 1.0
    ocean_tau_ts: float = 10 * DAY
    land_tau_ts: float = 3 * DAY
    land_ts_baseline: float = 288.0
    ts_min: float = 200.0
    ts_max: float = 330.0
    evap_max: float = 2e-4 # kg/m^2/s
    soil_evap_exponent: float = 1.0
    enable_theta_closure: bool = True

    _ranges: ClassVar[dict] = {
        "rho_air": (0.0, None),
        "ce": (0.0, None),
        "ch": (0.0, None),
        "wind_floor": (0.0, None),
        "ocean_tau_ts": (1.0, None),
        "land_tau_ts": (1.0, None),
        "evap_max": (0.0, None),
        "soil_evap_exponent": (0.0, None),
    }


@tree_math.struct
class NudgingParameters(StageParameters):
    enable: bool = True
    enable_ps: bool = True
    enable_surface_layer: bool = False # Relax lowest-level theta/qv as well
    cadence_seconds: float = 6 * HOUR
    tau_ps: float = 30 * DAY
    tau_theta: float = 10 * DAY
    tau_qv: float = 10 * DAY
    smooth_lon: int = 31 # Box window in longitude (cells)
    smooth_lat: int = 9 # Box window in latitude (cells)
    rh_ocean_eq: float = 0.8
    rh_ocean_pole: float = 0.75
    rh_land_eq: float = 0.6
    rh_land_pole: float = 0.7

    _ranges: ClassVar[dict] = {
        "cadence_seconds": (1.0, None),
        "tau_ps": (1.0, None),
        "tau_theta": (1.0, None),
        "tau_qv": (1.0, None),
        "smooth_lon": (1, None),
        "smooth_lat": (1, None),
        "rh_ocean_eq": (0.0, 1.0),
        "rh_ocean_pole": (0.0, 1.0),
        "rh_land_eq": (0.0, 1.0),
        "rh_land_pole": (0.0, 1.0),
    }


@tree_math.struct
class DiagnosticsParameters(StageParameters):
    enable_new_coverage: bool = True
    k_tau_low_liquid: float = 20.0
    k_tau_high_ice: float = 10.0
    k_tau_high_liquid: float = 30.0
    tau_max_low: float = 50.0
    tau_max_high: float = 50.0
    tau_cloud_low_seconds: float = 3 * HOUR
    tau_cloud_high_seconds: float = 6 * HOUR
    rh_low0: float = 0.9
    rh_low1: float = 0.99
    rh_high0: float = 0.55
    rh_high1: float = 0.85
    omega_low_subs0: float = 0.02
    omega_low_subs1: float = 0.2
    omega_high0: float = 0.05
    omega_high1: float = 0.3
    stab_low0: float = 0.5 # K
    stab_low1: float = 3.0 # K
    conv_anvil_tau_seconds: float = 6 * HOUR
    conv_anvil_boost: float = 0.6
    conv_low_suppress: float = 0.5
    qc0_low: float = 1e-4
    qc1_low: float = 8e-4
    qc0_high: float = 0.002
    qc1_high: float = 0.004
    dp_tau_low_max: float = 11000.0 # Depth of the lowest layer counted for low optical depth (Pa)
    tau0: float = 6.0
    w_tau_high: float = 0.0
    lev_vort: int = 2
    lev_upper: int = 2

    _ranges: ClassVar[dict] = {
        "tau_max_low": (0.0, None),
        "tau_max_high": (0.0, None),
        "tau_cloud_low_seconds": (1.0, None),
        "tau_cloud_high_seconds": (1.0, None),
        "conv_anvil_tau_seconds": (1.0, None),
        "lev_vort": (0, pc.nz - 1),
        "lev_upper": (0, pc.nz - 1),
    }


@tree_math.struct
class InitializationParameters(StageParameters):
    theta_base: float = 285.0
    theta_equator_boost: float = 12.0
    theta_pole_drop: float = 22.0
    theta_lapse_per_level: float = 6.0 # Theta increase per level upward (K)
    qv_ocean_base: float = 0.012
    qv_land_base: float = 0.006
    qv_pole_factor: float = 0.2
    soil_init_frac: float = 0.6
    ps_use_climatology: bool = True
    ts_use_sst: bool = True
    ps_init_min: float = 70000.0
    ps_init_max: float = 110000.0
    theta_perturbation: float = 0.1 # Amplitude of seeded theta noise (K)

    _ranges: ClassVar[dict] = {
        "qv_ocean_base": (0.0, 0.05),
        "qv_land_base": (0.0, 0.05),
        "qv_pole_factor": (0.0, 1.0),
        "soil_init_frac": (0.0, 1.0),
        "theta_perturbation": (0.0, 10.0),
    }


@tree_math.struct
class CoreParameters(StageParameters):
    max_steps_per_tick: int = 0 # 0 selects max(1000, ceil(1 day / dt) + 10)
    metrics_every_steps: int = 10
    climatology_update_seconds: float = HOUR
    instrument_every_steps: int = 0 # Per-stage delta logging stride, 0 disables
    snapshot_every_steps: int = 0 # Full-state statistics stride, 0 disables
    sanity_t_min: float = 150.0
    sanity_t_max: float = 350.0
    sanity_tau_max: float = 50.0

    _ranges: ClassVar[dict] = {
        "max_steps_per_tick": (0, None),
        "metrics_every_steps": (0, None),
        "climatology_update_seconds": (1.0, None),
        "instrument_every_steps": (0, None),
        "snapshot_every_steps": (0, None),
    }


@tree_math.struct
class Parameters:
    """All stage parameters of the weather core."""
    hydrostatic: HydrostaticParameters
    dynamics: DynamicsParameters
    mass: MassParameters
    advection: AdvectionParameters
    vertical: VerticalParameters
    microphysics: MicrophysicsParameters
    radiation: RadiationParameters
    surface: SurfaceParameters
    nudging: NudgingParameters
    diagnostics: DiagnosticsParameters
    initialization: InitializationParameters
    core: CoreParameters

    @classmethod
    def default(cls):
        return cls(**{f.name: f.type.default() for f in dataclasses.fields(cls)})

    @classmethod
    def from_dict(cls, config: Optional[Mapping[str, Any]]):
        """Build from a nested mapping ``{stage: {key: value}}``.

        Unknown stage names are logged and ignored; each stage section is
        validated by its own struct.
        """
        if config is None:
            return cls.default()
        if not isinstance(config, Mapping):
            raise ConfigurationError(f"Parameters expects a mapping, got {type(config).__name__}")
        stages = {f.name: f.type for f in dataclasses.fields(cls)}
        for key in config:
            if key not in stages:
                _warn_once(("Parameters", key), "Parameters: unknown stage %r ignored", key)
        return cls(**{name: stage_cls.from_dict(config.get(name)) for name, stage_cls in stages.items()})

    def with_stage(self, stage: str, **kwargs) -> 'Parameters':
        """Create new Parameters with updated fields of one stage"""
        if stage not in {f.name for f in dataclasses.fields(self)}:
            raise ConfigurationError(f"unknown stage {stage!r}")
        updated = dataclasses.replace(getattr(self, stage), **kwargs)
        return dataclasses.replace(self, **{stage: updated})

    def to_dict(self):
        """Nested plain mapping, the inverse of ``from_dict``."""
        return {f.name: getattr(self, f.name).asdict() for f in dataclasses.fields(self)}
