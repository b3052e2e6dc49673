import unittest

import jax.numpy as jnp
import numpy as np

from jwm.grid import Grid
from jwm.humidity import saturation_mixing_ratio
from jwm.hydrostatic import update_hydrostatic
from jwm.microphysics import cloud_processes, ice_fraction, sedimentation, step_microphysics
from jwm.params import MicrophysicsParameters
from jwm.physical_constants import grav
from jwm.state import ModelState


class TestMicrophysics(unittest.TestCase):

    def setUp(self):
        self.grid = Grid.create(nx=8, ny=4)
        state = ModelState.zeros(self.grid)
        theta = jnp.array([330.0, 318.0, 308.0, 300.0, 296.0])[:, None, None] * jnp.ones_like(state.theta)
        self.state = update_hydrostatic(state.replace(theta=theta))
        self.params = MicrophysicsParameters()
        self.dt = 600.0

    def saturated(self, factor):
        qs = saturation_mixing_ratio(self.state.t, self.state.p_mid)
        return self.state.replace(qv=factor * qs)

    def test_ice_fraction(self):
        t = jnp.array([300.0, self.params.t_freeze, self.params.t_ice_full, 200.0])
        np.testing.assert_allclose(ice_fraction(t, self.params), [0.0, 0.0, 1.0, 1.0])

    def test_supersaturation_condenses_and_warms(self):
        state = self.saturated(1.2)
        new = step_microphysics(state, self.params, self.dt)
        s = state.nz - 1
        self.assertTrue(jnp.all(new.qv[s] < state.qv[s]))
        self.assertTrue(jnp.all(new.qc[s] > state.qc[s]))
        self.assertTrue(jnp.all(new.theta[s] > state.theta[s]))

    def test_subsaturated_cloud_evaporates_and_cools(self):
        state = self.saturated(0.5)
        state = state.replace(qc=state.qc.at[-1].set(5e-4))
        new = cloud_processes(state, self.params, self.dt)
        self.assertTrue(jnp.all(new.qc[-1] < 5e-4))
        self.assertTrue(jnp.all(new.qv[-1] > state.qv[-1]))
        self.assertTrue(jnp.all(new.theta[-1] < state.theta[-1]))

    def test_latent_heating_is_capped(self):
        state = self.saturated(3.0)
        new = cloud_processes(state, self.params, self.dt)
        self.assertTrue(jnp.all(new.theta - state.theta <= self.params.dtheta_max_per_step * (1 + 1e-5)))

    def test_water_is_conserved(self):
        state = self.saturated(1.1).replace(qr=jnp.full_like(self.state.qr, 1e-4))
        new = step_microphysics(state, self.params, self.dt)
        mass = state.layer_thickness / grav
        before = jnp.sum((state.qv + state.qc + state.qi + state.qr) * mass, axis=0) + state.precip_accum
        after = jnp.sum((new.qv + new.qc + new.qi + new.qr) * mass, axis=0) + new.precip_accum
        np.testing.assert_allclose(after, before, rtol=1e-4)
        for name in ("qv", "qc", "qi", "qr"):
            self.assertTrue(jnp.all(getattr(new, name) >= 0))

    def test_sedimentation_moves_one_level_per_step(self):
        qr = jnp.zeros_like(self.state.qr).at[1].set(1e-3)
        state = self.state.replace(qr=qr)
        new, surface = sedimentation(state, self.params, self.dt)
        np.testing.assert_array_equal(surface, 0.0)
        self.assertTrue(jnp.all(new.qr[2] > 0))
        np.testing.assert_array_equal(new.qr[3:], 0.0)

    def test_precipitation_rate_and_accumulation(self):
        qr = jnp.zeros_like(self.state.qr).at[-1].set(1e-3)
        state = self.state.replace(qr=qr)
        new = step_microphysics(state, self.params, self.dt)
        self.assertTrue(jnp.all(new.precip_accum > 0))
        np.testing.assert_allclose(new.precip_rate, jnp.minimum(new.precip_accum * 3600.0 / self.dt,
                                                                self.params.precip_rate_max), rtol=1e-5)

    def test_disabled_is_noop(self):
        state = self.saturated(1.5)
        new = step_microphysics(state, self.params.replace(enable=False), self.dt)
        np.testing.assert_array_equal(new.qv, state.qv)
        np.testing.assert_array_equal(new.theta, state.theta)


if __name__ == '__main__':
    unittest.main()
