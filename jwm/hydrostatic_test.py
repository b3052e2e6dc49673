import unittest

import jax
import jax.numpy as jnp
import numpy as np

from jwm.grid import Grid
from jwm.hydrostatic import update_hydrostatic
from jwm.params import HydrostaticParameters
from jwm.physical_constants import p_top
from jwm.state import ModelState


def varied_state(grid):
    state = ModelState.zeros(grid)
    lat = grid.lat_deg[:, None]
    lon = grid.lon_deg[None, :]
    ps = 101325.0 + 3000.0 * jnp.sin(jnp.deg2rad(lon)) * jnp.cos(jnp.deg2rad(lat))
    theta = 285.0 + jnp.arange(state.nz)[::-1, None, None] * 8.0 + 10.0 * jnp.cos(jnp.deg2rad(lat))[None]
    qv = jnp.broadcast_to(0.01 * jnp.exp(-jnp.arange(state.nz)[::-1] / 2.0)[:, None, None], state.qv.shape)
    return state.replace(ps=ps, theta=theta, qv=qv)


class TestHydrostatic(unittest.TestCase):

    def setUp(self):
        self.grid = Grid.create(nx=24, ny=12)
        self.state = update_hydrostatic(varied_state(self.grid))

    def test_half_level_pressure_increases(self):
        self.assertTrue(jnp.all(jnp.diff(self.state.p_half, axis=0) > 0))
        np.testing.assert_allclose(self.state.p_half[0], p_top)
        np.testing.assert_allclose(self.state.p_half[-1], self.state.ps, rtol=1e-6)

    def test_level_pressure_between_interfaces(self):
        s = self.state
        self.assertTrue(jnp.all(s.p_mid > s.p_half[:-1]))
        self.assertTrue(jnp.all(s.p_mid < s.p_half[1:]))

    def test_geopotential_from_surface(self):
        s = self.state
        np.testing.assert_array_equal(s.phi_half[-1], 0.0)
        self.assertTrue(jnp.all(jnp.diff(s.phi_half, axis=0) < 0))
        np.testing.assert_allclose(s.phi_mid, 0.5 * (s.phi_half[:-1] + s.phi_half[1:]), rtol=1e-6)

    def test_virtual_temperature(self):
        s = self.state
        self.assertTrue(jnp.all(s.tv >= s.t))
        np.testing.assert_allclose(s.tv, s.t * (1 + 0.61 * s.qv), rtol=1e-6)

    def test_idempotent(self):
        twice = update_hydrostatic(self.state)
        for name in ("p_half", "p_mid", "t", "tv", "phi_half", "phi_mid"):
            np.testing.assert_array_equal(getattr(twice, name), getattr(self.state, name))

    def test_low_surface_pressure_is_floored(self):
        state = update_hydrostatic(self.state.replace(ps=jnp.full_like(self.state.ps, p_top - 500.0)))
        self.assertTrue(jnp.all(jnp.diff(state.p_half, axis=0) > 0))
        np.testing.assert_allclose(state.p_half[-1], p_top + HydrostaticParameters().ps_floor_offset)

    def test_gradient_is_finite(self):
        def column_height(theta):
            return jnp.sum(update_hydrostatic(self.state.replace(theta=theta)).phi_half[0])

        grad = jax.grad(column_height)(self.state.theta)
        self.assertFalse(jnp.any(jnp.isnan(grad)))
        self.assertTrue(jnp.all(grad > 0))


if __name__ == '__main__':
    unittest.main()
