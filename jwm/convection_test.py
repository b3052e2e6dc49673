import unittest

import jax.numpy as jnp
import numpy as np

from jwm.convection import (apply_convection, convective_mixing, convective_trigger, deep_convection,
                            entraining_plume, lifted_fraction, positive_percentile)
from jwm.grid import Grid
from jwm.hydrostatic import update_hydrostatic
from jwm.params import VerticalParameters
from jwm.physical_constants import grav
from jwm.state import ModelState


def unstable_state(grid):
    """Warm, moist surface level under a drier, stably stratified column, with
    ascent increasing eastward at the top of the surface level."""
    state = ModelState.zeros(grid)
    shape = state.theta.shape
    theta = jnp.array([330.0, 315.0, 305.0, 302.0, 300.0])[:, None, None] * jnp.ones(shape)
    qv = jnp.array([1e-4, 5e-4, 2e-3, 8e-3, 1.5e-2])[:, None, None] * jnp.ones(shape)
    ascent = jnp.linspace(0.1, 2.0, grid.nx)[None, :] * jnp.ones(grid.dims)
    omega = state.omega.at[state.nz - 1].set(-ascent)
    return update_hydrostatic(state.replace(theta=theta, qv=qv, omega=omega))


class TestTrigger(unittest.TestCase):

    def setUp(self):
        self.grid = Grid.create(nx=8, ny=4)
        self.state = unstable_state(self.grid)
        self.params = VerticalParameters()

    def test_positive_percentile(self):
        values = jnp.array([-3.0, 0.0, 1.0, 2.0, 3.0, 4.0])
        self.assertEqual(float(positive_percentile(values, 0.5)), 2.0)
        self.assertEqual(float(positive_percentile(-values, 0.9)), 3.0)
        self.assertEqual(float(positive_percentile(jnp.zeros(4), 0.9)), 0.0)

    def test_only_strongest_ascent_triggers(self):
        trigger = convective_trigger(self.state, self.params)
        self.assertTrue(jnp.all(trigger.triggered[:, -1]))
        self.assertFalse(jnp.any(trigger.triggered[:, :-1]))
        self.assertGreaterEqual(float(trigger.threshold), self.params.omega_trig)

    def test_dry_surface_does_not_trigger(self):
        dry = self.state.replace(qv=self.state.qv.at[-1].set(1e-3))
        self.assertFalse(jnp.any(convective_trigger(dry, self.params).triggered))

    def test_stable_column_does_not_trigger(self):
        stable = update_hydrostatic(self.state.replace(theta=self.state.theta.at[2].set(360.0)))
        self.assertFalse(jnp.any(convective_trigger(stable, self.params).triggered))


class TestPlume(unittest.TestCase):

    def setUp(self):
        self.grid = Grid.create(nx=8, ny=4)
        self.state = unstable_state(self.grid)
        self.params = VerticalParameters(enable_convective_mixing=False)
        self.dt = 600.0

    def test_lifted_fraction(self):
        self.assertEqual(lifted_fraction(self.params, 600.0), 0.05)
        self.assertAlmostEqual(lifted_fraction(self.params.replace(mu0=1.0), 720.0), 0.1)

    def test_convective_column_detrains_surface_vapour(self):
        state, result, _ = deep_convection(self.state, self.params, self.dt)
        s = self.state.nz - 1
        mass = self.state.layer_thickness / grav

        convective = np.asarray(result.triggered)
        self.assertTrue(convective.any())
        np.testing.assert_array_equal(np.asarray(state.conv_mask) > 0.5, convective)

        self.assertTrue(jnp.all(result.detrain_top >= 0.0))
        self.assertTrue(jnp.all(result.detrain_top[result.triggered] > 0.0))
        self.assertTrue(jnp.all(result.top_level[result.triggered] < s))

        surface_loss = (self.state.qv[s] - state.qv[s]) * mass[s]
        np.testing.assert_allclose(surface_loss, state.conv_condensate, rtol=1e-4, atol=1e-7)

        # non-convective columns are untouched
        quiet = ~result.triggered
        np.testing.assert_array_equal(state.qv[:, quiet], self.state.qv[:, quiet])
        np.testing.assert_array_equal(state.theta[:, quiet], self.state.theta[:, quiet])

    def test_detrainment_warms_and_moistens_plume_top(self):
        trigger = convective_trigger(self.state, self.params)
        result = entraining_plume(self.state, trigger.triggered, self.params, self.dt)
        state = apply_convection(self.state, result)
        col = (0, self.grid.nx - 1)
        top = int(result.top_level[col])
        self.assertGreater(float(state.qc[(top,) + col]), 0.0)
        self.assertGreater(float(state.theta[(top,) + col]), float(self.state.theta[(top,) + col]))
        dtheta = state.theta - self.state.theta
        self.assertTrue(jnp.all(dtheta <= self.params.dtheta_max_conv * (1 + 1e-5)))

    def test_convective_mixing_conserves_column_integrals(self):
        triggered = jnp.ones(self.grid.dims, dtype=bool)
        mixed = convective_mixing(self.state, triggered, self.params, self.dt)
        dp = self.state.layer_thickness
        for name in ("theta", "qv"):
            before = jnp.sum(getattr(self.state, name) * dp, axis=0)
            after = jnp.sum(getattr(mixed, name) * dp, axis=0)
            np.testing.assert_allclose(after, before, rtol=1e-5)
        self.assertFalse(jnp.allclose(mixed.qv, self.state.qv))


if __name__ == '__main__':
    unittest.main()
