import unittest

import jax.numpy as jnp
import numpy as np

from jwm.dynamics import cap_wind_speed, drag_timescale, step_winds
from jwm.grid import Grid
from jwm.hydrostatic import update_hydrostatic
from jwm.params import DynamicsParameters
from jwm.state import ModelState


class TestDynamics(unittest.TestCase):

    def setUp(self):
        self.grid = Grid.create(nx=24, ny=12)
        self.state = update_hydrostatic(ModelState.zeros(self.grid))
        self.params = DynamicsParameters()

    def test_drag_timescale_profile(self):
        tau = drag_timescale(5, self.params)
        np.testing.assert_allclose(tau[0], self.params.tau_drag_top)
        np.testing.assert_allclose(tau[-1], self.params.tau_drag_surface)
        self.assertTrue(jnp.all(jnp.diff(tau) < 0))

    def test_cap_wind_speed(self):
        u = jnp.array([300.0, 3.0])
        v = jnp.array([400.0, 4.0])
        u_c, v_c, n = cap_wind_speed(u, v, 150.0)
        np.testing.assert_allclose(jnp.hypot(u_c, v_c), [150.0, 5.0], rtol=1e-6)
        np.testing.assert_allclose(u_c[0] / v_c[0], 0.75, rtol=1e-6)
        self.assertEqual(int(n), 1)

    def test_resting_uniform_state_stays_at_rest(self):
        state, n_capped = step_winds(self.state, self.grid, self.params, 600.0)
        np.testing.assert_allclose(state.u, 0.0, atol=1e-12)
        np.testing.assert_allclose(state.v, 0.0, atol=1e-12)
        self.assertEqual(int(n_capped), 0)

    def test_wind_speed_is_capped(self):
        fast = self.state.replace(u=jnp.full_like(self.state.u, 400.0))
        state, n_capped = step_winds(fast, self.grid, self.params, 600.0)
        speed = jnp.hypot(state.u, state.v)
        self.assertTrue(jnp.all(speed <= self.params.max_wind * (1 + 1e-6)))
        self.assertGreater(int(n_capped), 0)

    def test_pressure_gradient_accelerates_toward_low_geopotential(self):
        lon = self.grid.lon_deg[None, :]
        ps = 101325.0 + 2000.0 * jnp.cos(jnp.deg2rad(lon))
        state = update_hydrostatic(self.state.replace(ps=jnp.broadcast_to(ps, self.grid.dims)))
        params = DynamicsParameters(nu_laplacian=0.0)
        new, _ = step_winds(state, self.grid, params, 60.0)
        equator = self.grid.ny // 2
        dphidx = jnp.roll(state.phi_mid, -1, axis=-1) - jnp.roll(state.phi_mid, 1, axis=-1)
        du = new.u[:, equator] - state.u[:, equator]
        self.assertTrue(jnp.all(du * dphidx[:, equator] <= 0))

    def test_polar_filter_smooths_high_latitudes(self):
        noise = jnp.where(jnp.arange(self.grid.nx) % 2 == 0, 1.0, -1.0)
        state = self.state.replace(v=jnp.broadcast_to(noise, self.state.v.shape) * 5.0)
        params = DynamicsParameters(polar_filter_every_steps=1, nu_laplacian=0.0, enable_metric_terms=False)
        filtered, _ = step_winds(state, self.grid, params, 1.0, step_index=0)
        unfiltered, _ = step_winds(state, self.grid, params.replace(polar_filter_every_steps=0), 1.0)
        polar = jnp.abs(self.grid.lat_deg) >= params.polar_filter_lat_start_deg
        self.assertTrue(jnp.all(jnp.abs(filtered.v[:, polar]) < jnp.abs(unfiltered.v[:, polar])))
        np.testing.assert_allclose(filtered.v[:, ~polar], unfiltered.v[:, ~polar])


if __name__ == '__main__':
    unittest.main()
