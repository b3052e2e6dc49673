import unittest

import jax.numpy as jnp
import numpy as np

from jwm.errors import ConfigurationError, NumericalHealthError
from jwm.grid import Grid
from jwm.hydrostatic import update_hydrostatic
from jwm.state import ModelState


class TestModelState(unittest.TestCase):

    def setUp(self):
        self.grid = Grid.create(nx=16, ny=8)
        self.state = update_hydrostatic(ModelState.zeros(self.grid))

    def test_shapes(self):
        state = self.state
        self.assertEqual(state.nz, 5)
        self.assertEqual(state.theta.shape, (5, 8, 16))
        self.assertEqual(state.p_half.shape, (6, 8, 16))
        self.assertEqual(state.omega.shape, (6, 8, 16))
        self.assertEqual(state.ps.shape, (8, 16))

    def test_custom_sigma_levels(self):
        state = ModelState.zeros(self.grid, sigma_half=[0.0, 0.5, 1.0])
        self.assertEqual(state.nz, 2)
        self.assertEqual(state.u.shape, (2, 8, 16))

    def test_non_increasing_sigma_raises(self):
        with self.assertRaises(ConfigurationError):
            ModelState.zeros(self.grid, sigma_half=[0.0, 0.5, 0.4, 1.0])

    def test_layer_thickness_sums_to_column(self):
        dp = self.state.layer_thickness
        self.assertTrue(jnp.all(dp > 0))
        np.testing.assert_allclose(jnp.sum(dp, axis=0), self.state.ps - self.state.p_half[0], rtol=1e-5)

    def test_clip_water(self):
        state = self.state.replace(qv=self.state.qv - 1.0, qr=self.state.qr + 0.5)
        clipped = state.clip_water()
        self.assertTrue(jnp.all(clipped.qv == 0.0))
        self.assertTrue(jnp.all(clipped.qr == 0.5))
        np.testing.assert_array_equal(clipped.theta, state.theta)

    def test_column_water(self):
        state = self.state.replace(qv=jnp.full_like(self.state.qv, 0.01))
        expected = 0.01 * (state.ps - state.p_half[0]) / 9.80665
        np.testing.assert_allclose(state.column_water(), expected, rtol=1e-5)

    def test_check_finite(self):
        self.assertEqual(self.state.check_finite(), [])
        bad = self.state.replace(ts=self.state.ts.at[0, 0].set(jnp.nan), u=self.state.u.at[0, 0, 0].set(jnp.inf))
        self.assertEqual(sorted(bad.check_finite()), ["ts", "u"])
        with self.assertRaises(NumericalHealthError):
            bad.check_finite(strict=True)


if __name__ == '__main__':
    unittest.main()
