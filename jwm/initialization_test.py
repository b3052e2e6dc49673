import unittest

import jax.numpy as jnp
import numpy as np

from jwm.climatology import MONTHS, _assemble, fallback_climatology
from jwm.grid import Grid
from jwm.initialization import initialize_from_climatology
from jwm.params import InitializationParameters
from jwm.state import PROGNOSTIC_3D


class TestInitialization(unittest.TestCase):

    def setUp(self):
        self.grid = Grid.create(nx=16, ny=8)
        self.clim = fallback_climatology(self.grid)

    def test_resting_stable_atmosphere(self):
        state = initialize_from_climatology(self.grid, self.clim)
        np.testing.assert_array_equal(state.u, 0.0)
        np.testing.assert_array_equal(state.v, 0.0)
        self.assertTrue(jnp.all(jnp.diff(state.theta, axis=0) < 0))
        self.assertTrue(jnp.all(jnp.diff(state.qv, axis=0) > 0))
        self.assertTrue(jnp.all(state.qv >= 0))
        self.assertTrue(jnp.all(jnp.diff(state.p_half, axis=0) > 0))

    def test_surface_follows_sst(self):
        params = InitializationParameters(theta_perturbation=0.0)
        state = initialize_from_climatology(self.grid, self.clim, params=params)
        np.testing.assert_allclose(state.ts, self.clim.sst_months[0] - 1.0, rtol=1e-6)
        np.testing.assert_allclose(state.theta[-1], state.ts + 2.0, rtol=1e-6)
        np.testing.assert_allclose(state.sst, self.clim.sst_months[0], rtol=1e-6)

    def test_seeded_perturbation(self):
        a = initialize_from_climatology(self.grid, self.clim, seed=3)
        b = initialize_from_climatology(self.grid, self.clim, seed=3)
        c = initialize_from_climatology(self.grid, self.clim, seed=4)
        for name in PROGNOSTIC_3D:
            np.testing.assert_array_equal(getattr(a, name), getattr(b, name))
        self.assertFalse(jnp.array_equal(a.theta, c.theta))
        self.assertLessEqual(float(jnp.max(jnp.abs(a.theta - c.theta))), 0.2 + 1e-4)

    def test_land_and_slp(self):
        monthly = (MONTHS, 8, 16)
        soil_cap = np.zeros((8, 16), np.float32)
        soil_cap[:, :5] = 100.0
        clim = _assemble(
            self.grid,
            sst_months=np.full(monthly, 295.0),
            slp_months=np.full(monthly, 120000.0),
            t2m_months=np.full(monthly, 280.0),
            soil_cap=soil_cap,
        )
        state = initialize_from_climatology(self.grid, clim)
        np.testing.assert_allclose(state.ps, InitializationParameters().ps_init_max)
        np.testing.assert_allclose(state.ts[:, :5], 280.0)
        np.testing.assert_allclose(state.ts[:, 5:], 294.0)
        np.testing.assert_allclose(state.soil_w[:, :5], 60.0, rtol=1e-6)
        np.testing.assert_array_equal(state.soil_w[:, 5:], 0.0)
        # drier over land in every latitude row
        self.assertTrue(jnp.all(jnp.max(state.qv[-1, :, :5], axis=-1) < jnp.min(state.qv[-1, :, 5:], axis=-1)))


if __name__ == '__main__':
    unittest.main()
