import unittest

import jax.numpy as jnp
import numpy as np

from jwm.humidity import exner, relative_humidity, saturation_mixing_ratio


class TestHumidity(unittest.TestCase):

    def test_saturation_mixing_ratio(self):
        # ~23 g/kg at 300 K near the surface, ~3.8 g/kg at freezing
        np.testing.assert_allclose(saturation_mixing_ratio(300.0, 1e5), 0.0227, rtol=0.02)
        np.testing.assert_allclose(saturation_mixing_ratio(273.15, 1e5), 0.0038, rtol=0.03)
        t = jnp.linspace(200.0, 320.0, 13)
        qs = saturation_mixing_ratio(t, 8e4)
        self.assertTrue(jnp.all(jnp.diff(qs) > 0))

    def test_saturation_mixing_ratio_is_bounded(self):
        self.assertLessEqual(float(saturation_mixing_ratio(400.0, 2e4)), float(np.float32(0.2)))
        self.assertTrue(jnp.isfinite(saturation_mixing_ratio(330.0, 10.0)))
        np.testing.assert_allclose(saturation_mixing_ratio(100.0, 1e5), saturation_mixing_ratio(180.0, 1e5))

    def test_relative_humidity(self):
        qs = saturation_mixing_ratio(290.0, 9e4)
        np.testing.assert_allclose(relative_humidity(0.5 * qs, 290.0, 9e4), 0.5, rtol=1e-5)
        self.assertEqual(float(relative_humidity(10.0, 290.0, 9e4)), 2.0)
        self.assertEqual(float(relative_humidity(-1.0, 290.0, 9e4)), 0.0)

    def test_exner(self):
        np.testing.assert_allclose(exner(1e5), 1.0)
        np.testing.assert_allclose(exner(5e4), 0.5 ** (287.0 / 1004.0), rtol=1e-3)


if __name__ == '__main__':
    unittest.main()
