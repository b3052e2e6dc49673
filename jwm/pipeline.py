'''
Date: 2026-02-17
The per-step stage list and the orchestrator that keeps pressure and
geopotential fresh.

Each stage declares whether it reads the hydrostatic fields (pressure,
temperature, geopotential) and whether it changes their inputs (surface
pressure, theta, humidity). ``run_pipeline`` inserts a hydrostatic refresh
before every reading stage that follows a changing one; the state entering
a step is treated as stale.
'''
from typing import Any, Callable, List, NamedTuple, Optional

import jax

from jwm.advection import step_advection
from jwm.climatology import ClimatologyNow
from jwm.diagnostics import update_diagnostics
from jwm.dynamics import step_winds
from jwm.grid import Grid
from jwm.hydrostatic import update_hydrostatic
from jwm.mass import step_surface_pressure
from jwm.microphysics import step_microphysics
from jwm.nudging import step_nudging
from jwm.params import Parameters
from jwm.radiation import step_radiation
from jwm.state import ModelState
from jwm.surface_flux import step_surface
from jwm.vertical import step_vertical

HYDROSTATIC = "hydrostatic"


class StepContext(NamedTuple):
    step_index: int
    time_utc: float
    climo_now: Optional[ClimatologyNow]
    run_nudging: bool = False
    nudging_dt: float = 0.0


class Stage(NamedTuple):
    name: str
    fn: Callable[[ModelState, StepContext], Any] # returns (state, info)
    consumes_pressure: bool
    dirties_pressure: bool
    active: Callable[[StepContext], bool] = lambda ctx: True


class PipelineResult(NamedTuple):
    state: ModelState
    executed: List[str]
    info: dict


def build_stages(grid: Grid, params: Parameters, dt) -> List[Stage]:
    """
    The fixed stage order of one model step, each stage jitted with the grid
    and its parameters closed over.
    """
    surface = jax.jit(lambda s: step_surface(s, params.surface, dt))
    radiation = jax.jit(lambda s, t: step_radiation(s, grid, params.radiation, dt, t))
    dynamics = jax.jit(lambda s, i: step_winds(s, grid, params.dynamics, dt, i))
    mass = jax.jit(lambda s: step_surface_pressure(s, grid, params.mass, dt))
    advection = jax.jit(lambda s: step_advection(s, grid, params.advection, dt))
    vertical = jax.jit(lambda s: step_vertical(s, grid, params.vertical, dt))
    microphysics = jax.jit(lambda s: step_microphysics(s, params.microphysics, dt))
    nudging = jax.jit(lambda s, c, n: step_nudging(s, grid, c, params.nudging, params.mass, n))
    diagnostics = jax.jit(lambda s: update_diagnostics(s, grid, params.diagnostics, dt))

    return [
        Stage("surface", lambda s, ctx: (surface(s), None), True, True),
        Stage("radiation", lambda s, ctx: (radiation(s, ctx.time_utc), None), True, True),
        Stage("dynamics", lambda s, ctx: dynamics(s, ctx.step_index), True, False),
        Stage("mass", lambda s, ctx: mass(s), True, True),
        Stage("advection", lambda s, ctx: (advection(s), None), False, True),
        Stage("vertical", lambda s, ctx: vertical(s), True, True),
        Stage("microphysics", lambda s, ctx: (microphysics(s), None), True, True),
        Stage("nudging", lambda s, ctx: (nudging(s, ctx.climo_now, ctx.nudging_dt), None), True, True,
              active=lambda ctx: ctx.run_nudging and ctx.climo_now is not None),
        Stage("diagnostics", lambda s, ctx: diagnostics(s), True, False),
    ]


def run_pipeline(state: ModelState, stages: List[Stage], ctx: StepContext, hydrostatic: Callable,
                 on_stage: Optional[Callable[[str, ModelState, ModelState], None]] = None) -> PipelineResult:
    """
    Runs one model step through ``stages``.

    Args:
        state: State entering the step
        stages: Stage list from :func:`build_stages`
        ctx: Step index, model time and nudging schedule
        hydrostatic: Callable refreshing the hydrostatic fields of a state
        on_stage: Optional callback ``(name, before, after)`` for every stage run

    Returns:
        PipelineResult with the final state, the names of the stages executed
        (refreshes included) and the per-stage info objects
    """
    executed = []
    info = {}
    stale = True
    for stage in stages:
        if not stage.active(ctx):
            continue
        if stage.consumes_pressure and stale:
            state = hydrostatic(state)
            executed.append(HYDROSTATIC)
            stale = False
        before = state
        state, stage_info = stage.fn(state, ctx)
        executed.append(stage.name)
        if stage_info is not None:
            info[stage.name] = stage_info
        if on_stage is not None:
            on_stage(stage.name, before, state)
        stale = stale or stage.dirties_pressure
    return PipelineResult(state=state, executed=executed, info=info)


def make_hydrostatic(params: Parameters):
    return jax.jit(lambda s: update_hydrostatic(s, params.hydrostatic))
