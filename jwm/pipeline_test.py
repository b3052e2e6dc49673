import unittest

import jax.numpy as jnp
import numpy as np

from jwm.climatology import fallback_climatology, interpolate_month
from jwm.grid import Grid
from jwm.initialization import initialize_from_climatology
from jwm.params import Parameters
from jwm.pipeline import HYDROSTATIC, Stage, StepContext, build_stages, make_hydrostatic, run_pipeline
from jwm.state import ModelState

H = HYDROSTATIC


def quiet_parameters():
    """Parameters with every physics stage and filter switched off."""
    params = Parameters.default()
    for stage in ("surface", "radiation", "microphysics", "nudging"):
        params = params.with_stage(stage, enable=False)
    params = params.with_stage("vertical", enable_mixing=False, enable_convection=False,
                               enable_vertical_advection=False)
    params = params.with_stage("advection", enable_polar_filter=False)
    return params


class TestRunPipeline(unittest.TestCase):

    def record(self, name, consumes, dirties, log):
        def fn(state, ctx):
            log.append(name)
            return state, None
        return Stage(name, fn, consumes, dirties)

    def test_refresh_before_consumers_of_stale_pressure(self):
        calls = []
        stages = [
            self.record("a", True, False, calls),
            self.record("b", True, True, calls),
            self.record("c", False, True, calls),
            self.record("d", True, False, calls),
            self.record("e", True, False, calls),
        ]
        result = run_pipeline("state", stages, StepContext(0, 0.0, None), lambda s: s)
        self.assertEqual(result.executed, [H, "a", "b", "c", H, "d", "e"])
        self.assertEqual(calls, ["a", "b", "c", "d", "e"])
        self.assertEqual(result.info, {})

    def test_inactive_stage_is_skipped(self):
        stages = [Stage("x", lambda s, ctx: (s, 1), False, False, active=lambda ctx: ctx.run_nudging)]
        self.assertEqual(run_pipeline(0, stages, StepContext(0, 0.0, None), lambda s: s).executed, [])
        result = run_pipeline(0, stages, StepContext(0, 0.0, None, run_nudging=True), lambda s: s)
        self.assertEqual(result.executed, ["x"])
        self.assertEqual(result.info, {"x": 1})


class TestModelStep(unittest.TestCase):

    def setUp(self):
        self.grid = Grid.create(nx=24, ny=12)
        self.clim = fallback_climatology(self.grid)
        self.params = Parameters.default()
        self.state = initialize_from_climatology(self.grid, self.clim)
        self.ctx = StepContext(step_index=0, time_utc=0.0, climo_now=interpolate_month(self.clim, 0.0))

    def test_stage_order(self):
        stages = build_stages(self.grid, self.params, 120.0)
        result = run_pipeline(self.state, stages, self.ctx, make_hydrostatic(self.params))
        self.assertEqual(result.executed, [
            H, "surface", H, "radiation", H, "dynamics", "mass", "advection",
            H, "vertical", H, "microphysics", H, "diagnostics",
        ])
        self.assertEqual(set(result.info), {"dynamics", "mass", "vertical", "diagnostics"})
        self.assertEqual(result.state.check_finite(), [])

    def test_nudging_runs_when_scheduled(self):
        stages = build_stages(self.grid, self.params, 120.0)
        ctx = self.ctx._replace(run_nudging=True, nudging_dt=6 * 3600.0)
        result = run_pipeline(self.state, stages, ctx, make_hydrostatic(self.params))
        self.assertIn("nudging", result.executed)
        ctx = ctx._replace(climo_now=None)
        result = run_pipeline(self.state, stages, ctx, make_hydrostatic(self.params))
        self.assertNotIn("nudging", result.executed)

    def test_on_stage_callback(self):
        seen = []
        stages = build_stages(self.grid, self.params, 120.0)
        run_pipeline(self.state, stages, self.ctx, make_hydrostatic(self.params),
                     on_stage=lambda name, before, after: seen.append((name, isinstance(after, ModelState))))
        self.assertEqual([name for name, _ in seen], [
            "surface", "radiation", "dynamics", "mass", "advection", "vertical", "microphysics", "diagnostics"])
        self.assertTrue(all(ok for _, ok in seen))

    def test_quiet_uniform_state_is_unchanged(self):
        params = quiet_parameters()
        state = ModelState.zeros(self.grid)
        theta = jnp.array([330.0, 318.0, 308.0, 300.0, 296.0])[:, None, None] * jnp.ones_like(state.theta)
        qv = jnp.array([1e-5, 1e-4, 5e-4, 1e-3, 2e-3])[:, None, None] * jnp.ones_like(state.qv)
        state = make_hydrostatic(params)(state.replace(theta=theta, qv=qv))
        stages = build_stages(self.grid, params, 120.0)
        result = run_pipeline(state, stages, self.ctx, make_hydrostatic(params))
        for name in ("u", "v", "theta", "qv", "qc", "qi", "qr", "ps"):
            np.testing.assert_allclose(getattr(result.state, name), getattr(state, name), rtol=1e-5, atol=1e-6)


if __name__ == '__main__':
    unittest.main()
