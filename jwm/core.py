'''
Date: 2026-02-17
The weather core: owns the grid, the parameters and the model state, loads
climatology in the background and advances the model in fixed steps from
wall-clock or simulation time handed in by the caller.
'''
import enum
import logging
import math
import os
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Callable, Dict, Optional

import jax.numpy as jnp

from jwm.climatology import Climatology, ClimatologyNow, fallback_climatology, interpolate_month
from jwm.diagnostics import DiagnosticFields
from jwm.errors import ClimatologyLoadError
from jwm.grid import Grid
from jwm.initialization import initialize_from_climatology
from jwm.instrumentation import InstrumentationLogger, sanity_check, state_stats
from jwm.params import Parameters
from jwm.pipeline import StepContext, build_stages, make_hydrostatic, run_pipeline
from jwm.state import ModelState

logger = logging.getLogger(__name__)

SURFACE_FIELDS = ("ps", "ts", "soil_w", "precip_rate", "precip_accum", "land_mask", "sst", "sea_ice",
                  "conv_mask", "conv_condensate")
LEVEL_FIELDS = ("u", "v", "theta", "t", "qv", "qc", "qi", "qr")
UPPER_LEVEL = 2
CLAMP_COUNTERS = ("ps_min", "ps_max", "wind", "tau_low", "tau_high", "sanity")


class Lifecycle(enum.Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"


def default_max_steps(dt):
    return max(1000, math.ceil(86400.0 / dt) + 10)


def production_env():
    return os.environ.get("JWM_ENV", "").lower() == "production"


class WeatherCore:
    """
    Fixed-step driver of the five-level model.

    The core starts UNINITIALIZED. Either hand a ``climatology_loader`` to the
    constructor (or to :meth:`load_climatology`), which runs it on an
    executor and moves the core to READY once the future completes, or call
    :meth:`initialize` directly. ``advance`` returns 0 while the core is not
    READY.

    Args:
        nx: Number of longitude cells
        ny: Number of latitude cells
        dt: Model timestep (s)
        seed: Seed of the initial perturbation
        params: Parameters, defaults when None
        climatology_loader: Optional ``loader(grid) -> Climatology``
        executor: Executor running the loader, a private single thread by default
        instrumentation: Optional InstrumentationLogger
        debug_checks: Run the sanity pass; defaults to on outside production
        time_utc: Initial model time, seconds since the start of the year
    """

    def __init__(self, nx=180, ny=90, dt=120.0, seed=0, params: Optional[Parameters] = None,
                 climatology_loader: Optional[Callable[[Grid], Climatology]] = None,
                 executor: Optional[Executor] = None,
                 instrumentation: Optional[InstrumentationLogger] = None,
                 debug_checks: Optional[bool] = None, time_utc=0.0):
        if dt <= 0:
            raise ValueError(f"dt must be positive, got {dt}")
        self.grid = Grid.create(nx=nx, ny=ny)
        self.dt = float(dt)
        self.params = params if params is not None else Parameters.default()
        self.instrumentation = instrumentation
        self.debug_checks = (not production_env()) if debug_checks is None else debug_checks
        self.time_utc = float(time_utc)
        self.lifecycle = Lifecycle.UNINITIALIZED
        self.state: Optional[ModelState] = None
        self.climatology: Optional[Climatology] = None
        self.climo_now: Optional[ClimatologyNow] = None
        self.diagnostic_fields: Optional[DiagnosticFields] = None
        self.last_info: dict = {}
        self.step_count = 0
        self.counters = {name: 0 for name in CLAMP_COUNTERS}
        self._seed = int(seed)
        self._accumulator = 0.0
        self._nudging_accumulator = 0.0
        self._climo_time = self.time_utc
        self._future: Optional[Future] = None
        self._executor = executor
        self._owns_executor = False

        cap = self.params.core.max_steps_per_tick
        self.max_steps_per_tick = cap if cap > 0 else default_max_steps(self.dt)

        self._stages = build_stages(self.grid, self.params, self.dt)
        self._hydrostatic = make_hydrostatic(self.params)

        if climatology_loader is not None:
            self.load_climatology(climatology_loader)

    # Lifecycle

    def load_climatology(self, loader: Callable[[Grid], Climatology]) -> Future:
        """Submit ``loader(grid)`` and initialize from its result once it completes."""
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="jwm-climatology")
            self._owns_executor = True
        self.lifecycle = Lifecycle.LOADING
        self._future = self._executor.submit(loader, self.grid)
        return self._future

    def _poll_climatology(self):
        if self.lifecycle is not Lifecycle.LOADING or self._future is None or not self._future.done():
            return
        future, self._future = self._future, None
        try:
            climatology = future.result()
        except ClimatologyLoadError as e:
            logger.warning("climatology load failed (%s), using analytic fallback", e)
            climatology = fallback_climatology(self.grid)
        except Exception:
            logger.warning("climatology loader raised, using analytic fallback", exc_info=True)
            climatology = fallback_climatology(self.grid)
        self.initialize(climatology)

    def initialize(self, climatology: Optional[Climatology] = None):
        """Build the initial state from ``climatology`` (analytic fallback when None) and become READY."""
        if climatology is None:
            climatology = fallback_climatology(self.grid)
        self.climatology = climatology
        self.state = initialize_from_climatology(
            self.grid, climatology, time_utc=self.time_utc, seed=self._seed,
            params=self.params.initialization, hydrostatic_params=self.params.hydrostatic)
        self.climo_now = interpolate_month(climatology, self.time_utc)
        self._climo_time = self.time_utc
        self._accumulator = 0.0
        self._nudging_accumulator = 0.0
        self.diagnostic_fields = None
        self.lifecycle = Lifecycle.READY
        logger.info("weather core ready: %dx%dx%d, dt=%.0fs, seed=%d, fallback climatology=%s",
                    self.grid.nx, self.grid.ny, self.state.nz, self.dt, self._seed, climatology.used_fallback)

    @property
    def ready(self):
        self._poll_climatology()
        return self.lifecycle is Lifecycle.READY

    @property
    def seed(self):
        return self._seed

    @property
    def pending_seconds(self):
        """Accumulated model time not yet consumed by whole steps."""
        return self._accumulator

    def set_seed(self, seed):
        """Change the seed; a READY core is re-initialized on the same grid and climatology."""
        self._seed = int(seed)
        if self.lifecycle is Lifecycle.READY:
            self.initialize(self.climatology)

    def set_time_utc(self, seconds):
        """Jump the model clock. Pending step and nudging time is discarded."""
        if not math.isfinite(seconds):
            logger.warning("ignoring non-finite model time %r", seconds)
            return
        self.time_utc = float(seconds)
        self._accumulator = 0.0
        self._nudging_accumulator = 0.0
        if self.climatology is not None:
            self._refresh_climatology()
        if self.state is not None:
            self.state = self._hydrostatic(self.state)

    # Time stepping

    def advance(self, seconds) -> int:
        """
        Accumulate ``seconds`` of model time and run as many whole steps as
        fit, at most ``max_steps_per_tick``. When capped, the retained time is
        bounded by ``dt * max_steps_per_tick``.

        Returns:
            Number of steps executed
        """
        self._poll_climatology()
        if self.lifecycle is not Lifecycle.READY:
            return 0
        if seconds > 0:
            self._accumulator += seconds
        wanted = int(self._accumulator // self.dt)
        steps = min(wanted, self.max_steps_per_tick)
        for _ in range(steps):
            self.step()
        self._accumulator -= steps * self.dt
        if wanted > steps:
            logger.debug("step cap reached: %d of %d steps run", steps, wanted)
            self._accumulator = min(self._accumulator, self.dt * self.max_steps_per_tick)
        return steps

    def _refresh_climatology(self):
        self.climo_now = interpolate_month(self.climatology, self.time_utc)
        self._climo_time = self.time_utc
        if self.state is not None:
            self.state = self.state.replace(sst=self.climo_now.sst, sea_ice=self.climo_now.sea_ice)

    def step(self):
        """Run exactly one model step."""
        if self.lifecycle is not Lifecycle.READY:
            raise RuntimeError("weather core is not initialized")
        core = self.params.core

        if self.time_utc - self._climo_time >= core.climatology_update_seconds:
            self._refresh_climatology()

        nudging = self.params.nudging
        self._nudging_accumulator += self.dt
        run_nudging = nudging.enable and self._nudging_accumulator >= nudging.cadence_seconds
        ctx = StepContext(step_index=self.step_count, time_utc=self.time_utc, climo_now=self.climo_now,
                          run_nudging=run_nudging, nudging_dt=self._nudging_accumulator)

        on_stage = None
        if (self.instrumentation is not None and core.instrument_every_steps > 0
                and self.step_count % core.instrument_every_steps == 0):
            on_stage = self._stage_delta

        result = run_pipeline(self.state, self._stages, ctx, self._hydrostatic, on_stage)
        self.state = result.state
        self.last_info = result.info
        if run_nudging:
            self._nudging_accumulator = 0.0

        self._collect(result.info)
        self.time_utc += self.dt
        self.step_count += 1

        if core.metrics_every_steps > 0 and self.step_count % core.metrics_every_steps == 0:
            self._log_metrics()
            if self.debug_checks:
                report = sanity_check(self.state, self.diagnostic_fields, self.params.mass, core)
                self.counters["sanity"] += report.violations
        if (self.instrumentation is not None and core.snapshot_every_steps > 0
                and self.step_count % core.snapshot_every_steps == 0):
            self.instrumentation.on_snapshot(self.step_count, self.time_utc, state_stats(self.state, self.grid))

    def _stage_delta(self, name, before, after):
        self.instrumentation.on_stage_delta(self.step_count, name, state_stats(before, self.grid),
                                            state_stats(after, self.grid))

    def _collect(self, info):
        if "dynamics" in info:
            self.counters["wind"] += int(info["dynamics"])
        if "mass" in info:
            self.counters["ps_min"] += int(info["mass"].clamp_min_count)
            self.counters["ps_max"] += int(info["mass"].clamp_max_count)
        if "diagnostics" in info:
            self.diagnostic_fields = info["diagnostics"]
            self.counters["tau_low"] += int(self.diagnostic_fields.tau_low_clamp_count)
            self.counters["tau_high"] += int(self.diagnostic_fields.tau_high_clamp_count)
        vertical = self.params.vertical
        if "vertical" in info and vertical.debug_conservation:
            residual = float(info["vertical"].water_residual)
            if residual > vertical.water_residual_tolerance:
                logger.warning("step %d: column water residual %.3g kg/m^2 exceeds %.3g",
                               self.step_count, residual, vertical.water_residual_tolerance)

    def _log_metrics(self):
        s = self.state
        means = {name: float(jnp.mean(self.grid.global_mean(getattr(s, name)))) for name in ("ps", "t", "qv")}
        precip = float(self.grid.global_mean(s.precip_rate))
        conv = float(jnp.mean(s.conv_mask))
        logger.info("step=%d t=%.0fs ps=%.1f T=%.2f qv=%.3e precip=%.3f mm/h conv=%.3f clamps=%s",
                    self.step_count, self.time_utc, means["ps"], means["t"], means["qv"], precip, conv,
                    self.counters)

    # Field access

    def fields(self) -> Dict[str, jnp.ndarray]:
        """
        Named 2-d fields: surface fields, each level field at the lowest
        level (``<name>_lower``) and at level 2 (``<name>_upper``), and the
        diagnostics of the last step. Empty until the core is READY.
        """
        if self.state is None:
            return {}
        s = self.state
        lower = s.nz - 1
        upper = min(UPPER_LEVEL, lower)
        out = {name: getattr(s, name) for name in SURFACE_FIELDS}
        for name in LEVEL_FIELDS:
            volume = getattr(s, name)
            out[f"{name}_lower"] = volume[lower]
            out[f"{name}_upper"] = volume[upper]
        diagnostics = self.diagnostic_fields
        if diagnostics is None:
            diagnostics = DiagnosticFields.zeros(self.grid.dims)
        for name, value in diagnostics.asdict().items():
            if value.ndim == 2:
                out[name] = value
        return out

    def volume(self, name) -> jnp.ndarray:
        """Full 3-d (or interface) array of a state field."""
        if self.state is None:
            raise RuntimeError("weather core is not initialized")
        value = getattr(self.state, name, None)
        if value is None or value.ndim != 3:
            raise KeyError(f"{name!r} is not a 3-d state field")
        return value

    def close(self):
        if self._owns_executor:
            self._executor.shutdown(wait=False)
