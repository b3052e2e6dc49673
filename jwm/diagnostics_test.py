import unittest

import jax.numpy as jnp
import numpy as np

from jwm.diagnostics import DiagnosticFields, condensate_paths, update_diagnostics
from jwm.grid import Grid
from jwm.humidity import saturation_mixing_ratio
from jwm.hydrostatic import update_hydrostatic
from jwm.params import DiagnosticsParameters
from jwm.state import ModelState


class TestDiagnostics(unittest.TestCase):

    def setUp(self):
        self.grid = Grid.create(nx=16, ny=8)
        state = ModelState.zeros(self.grid)
        theta = jnp.array([330.0, 318.0, 308.0, 300.0, 296.0])[:, None, None] * jnp.ones_like(state.theta)
        qv = jnp.array([1e-4, 5e-4, 2e-3, 6e-3, 1e-2])[:, None, None] * jnp.ones_like(state.qv)
        self.state = update_hydrostatic(state.replace(theta=theta, qv=qv))
        self.params = DiagnosticsParameters()
        self.dt = 600.0

    def test_zeros(self):
        fields = DiagnosticFields.zeros(self.grid.dims)
        self.assertEqual(fields.cloud.shape, self.grid.dims)
        self.assertEqual(fields.tau_low_clamp_count.dtype, jnp.int32)

    def test_fields_are_bounded(self):
        state, fields = update_diagnostics(self.state, self.grid, self.params, self.dt)
        for name in ("cloud", "cloud_low", "cloud_high"):
            value = getattr(fields, name)
            self.assertEqual(value.shape, self.grid.dims)
            self.assertTrue(jnp.all((value >= 0.0) & (value <= 1.0)))
        np.testing.assert_allclose(fields.cloud, 1 - (1 - fields.cloud_low) * (1 - fields.cloud_high), rtol=1e-6)
        self.assertTrue(jnp.all((fields.rh >= 0.0) & (fields.rh <= 2.0)))
        np.testing.assert_array_equal(state.cloud_low_cov, fields.cloud_low)
        np.testing.assert_allclose(fields.vort, 0.0, atol=1e-12)

    def test_condensate_paths(self):
        state = self.state.replace(qc=self.state.qc.at[-1].set(1e-3), qi=self.state.qi.at[0].set(1e-4))
        lwp_low, ice, liquid, qc_low, q_high = condensate_paths(state, self.params)
        self.assertTrue(jnp.all(lwp_low > 0))
        self.assertTrue(jnp.all(ice > 0))
        np.testing.assert_array_equal(liquid, 0.0)
        np.testing.assert_allclose(qc_low, 1e-3)
        self.assertTrue(jnp.all(q_high > 0))

    def test_optical_depth_is_clamped_and_counted(self):
        state = self.state.replace(qc=self.state.qc.at[-1].set(0.05))
        _, fields = update_diagnostics(state, self.grid, self.params, self.dt)
        np.testing.assert_allclose(fields.tau_low, self.params.tau_max_low)
        self.assertEqual(int(fields.tau_low_clamp_count), self.grid.nx * self.grid.ny)
        self.assertEqual(int(fields.tau_high_clamp_count), 0)

    def test_convective_anvil_memory(self):
        mask = jnp.zeros(self.grid.dims).at[2, 3].set(1.0)
        state, _ = update_diagnostics(self.state.replace(conv_mask=mask), self.grid, self.params, self.dt)
        self.assertEqual(float(state.conv_anvil[2, 3]), 1.0)
        self.assertEqual(float(state.conv_anvil[0, 0]), 0.0)
        quiet, _ = update_diagnostics(state.replace(conv_mask=jnp.zeros(self.grid.dims)), self.grid, self.params,
                                      self.dt)
        self.assertLess(float(quiet.conv_anvil[2, 3]), 1.0)
        self.assertGreater(float(quiet.conv_anvil[2, 3]), 0.9)

    def test_moist_upper_ascent_builds_high_cloud(self):
        qs = saturation_mixing_ratio(self.state.t, self.state.p_mid)
        omega = self.state.omega.at[1:4].set(-0.5)
        state = self.state.replace(qv=0.95 * qs, omega=omega)
        new, fields = update_diagnostics(state, self.grid, self.params, self.dt)
        self.assertTrue(jnp.all(fields.cloud_high > 0))
        # cover relaxes toward its target rather than jumping to it
        self.assertTrue(jnp.all(fields.cloud_high < 0.5))

    def test_condensate_coverage(self):
        params = self.params.replace(enable_new_coverage=False)
        _, clear = update_diagnostics(self.state, self.grid, params, self.dt)
        np.testing.assert_array_equal(clear.cloud_low, 0.0)
        cloudy = self.state.replace(qc=self.state.qc.at[-1].set(1.0))
        _, fields = update_diagnostics(cloudy, self.grid, params, self.dt)
        np.testing.assert_allclose(fields.cloud_low, 1.0)


if __name__ == '__main__':
    unittest.main()
