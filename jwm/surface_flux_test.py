import unittest

import jax.numpy as jnp
import numpy as np

from jwm.grid import Grid
from jwm.hydrostatic import update_hydrostatic
from jwm.params import SurfaceParameters
from jwm.state import ModelState
from jwm.surface_flux import bulk_fluxes, step_surface


class TestSurfaceFlux(unittest.TestCase):

    def setUp(self):
        self.grid = Grid.create(nx=8, ny=4)
        state = ModelState.zeros(self.grid)
        theta = jnp.array([330.0, 318.0, 308.0, 300.0, 294.0])[:, None, None] * jnp.ones_like(state.theta)
        qv = jnp.array([1e-4, 5e-4, 2e-3, 5e-3, 8e-3])[:, None, None] * jnp.ones_like(state.qv)
        land = jnp.zeros(self.grid.dims).at[:, :4].set(1.0)
        state = state.replace(theta=theta, qv=qv, land_mask=land, sst=jnp.full(self.grid.dims, 300.0),
                              ts=jnp.full(self.grid.dims, 300.0), soil_cap=jnp.full(self.grid.dims, 150.0),
                              soil_w=jnp.full(self.grid.dims, 75.0))
        self.state = update_hydrostatic(state)
        self.params = SurfaceParameters()
        self.dt = 600.0

    def test_fluxes(self):
        fluxes = bulk_fluxes(self.state, self.params)
        np.testing.assert_allclose(fluxes.wind_speed, self.params.wind_floor)
        self.assertTrue(jnp.all(fluxes.evaporation > 0))
        self.assertTrue(jnp.all(fluxes.evaporation <= self.params.evap_max))
        # half-full soil halves land evaporation
        np.testing.assert_allclose(fluxes.evaporation[:, :4], 0.5 * fluxes.evaporation[:, 4:], rtol=1e-5)
        self.assertTrue(jnp.all(fluxes.sensible_heat > 0))

    def test_evaporation_moistens_lowest_level(self):
        new = step_surface(self.state, self.params, self.dt)
        s = self.state.nz - 1
        self.assertTrue(jnp.all(new.qv[s] > self.state.qv[s]))
        np.testing.assert_array_equal(new.qv[:s], self.state.qv[:s])

    def test_surface_temperature_relaxes(self):
        state = self.state.replace(ts=jnp.full(self.grid.dims, 320.0))
        new = step_surface(state, self.params, 3600.0)
        ocean = new.ts[:, 4:]
        land = new.ts[:, :4]
        self.assertTrue(jnp.all((ocean < 320.0) & (ocean > 300.0)))
        self.assertTrue(jnp.all((land < 320.0) & (land > self.params.land_ts_baseline)))
        # land relaxes faster
        self.assertTrue(jnp.all(land < ocean))

    def test_surface_temperature_is_clamped(self):
        state = self.state.replace(ts=jnp.full(self.grid.dims, 400.0))
        new = step_surface(state, self.params.replace(ocean_tau_ts=1e9, land_tau_ts=1e9), self.dt)
        np.testing.assert_allclose(new.ts, self.params.ts_max)

    def test_soil_water_is_clamped_to_capacity(self):
        state = self.state.replace(soil_w=jnp.full(self.grid.dims, 149.9),
                                   precip_rate=jnp.full(self.grid.dims, 100.0))
        new = step_surface(state, self.params, self.dt)
        np.testing.assert_allclose(new.soil_w[:, :4], 150.0)
        # ocean soil water is left alone
        np.testing.assert_allclose(new.soil_w[:, 4:], 149.9)

        dry = self.state.replace(soil_w=jnp.full(self.grid.dims, 1e-3))
        new = step_surface(dry, self.params.replace(soil_evap_exponent=0.0), 3600.0)
        self.assertTrue(jnp.all(new.soil_w >= 0))

    def test_theta_closure(self):
        closed = step_surface(self.state, self.params, self.dt)
        open_ = step_surface(self.state, self.params.replace(enable_theta_closure=False), self.dt)
        np.testing.assert_array_equal(open_.theta, self.state.theta)
        self.assertFalse(jnp.allclose(closed.theta, self.state.theta))

    def test_disabled_is_noop(self):
        new = step_surface(self.state, self.params.replace(enable=False), self.dt)
        for name in ("qv", "theta", "ts", "soil_w"):
            np.testing.assert_array_equal(getattr(new, name), getattr(self.state, name))


if __name__ == '__main__':
    unittest.main()
