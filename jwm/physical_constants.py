"""
Date: 2026-02-11
Physical constants and the default vertical grid of the five-level core.
"""
import numpy as np

# Physical constants for dynamics
rearth = 6.371e+6 # Radius of Earth (m)
omega = 7.2921159e-05 # Rotation rate of Earth (rad/s)
grav = 9.80665 # Gravitational acceleration (m/s/s)
meters_per_degree = 111000.0 # Length of one degree of latitude (m)

# Physical constants for thermodynamics
p0 = 1.e+5 # Reference pressure for potential temperature (Pa)
cp = 1004.0 # Specific heat of dry air at constant pressure (J/K/kg)
rgas = 287.05 # Gas constant for dry air (J/K/kg)
rvap = 461.5 # Gas constant for water vapour (J/K/kg)
akap = rgas / cp # Exponent of the Exner function
eps_vap = 0.622 # Ratio of molecular weights of water vapour and dry air
virtual_coeff = 0.61 # Coefficient of the virtual temperature correction
alhc = 2.5e+6 # Latent heat of condensation (J/kg)
tfreeze = 273.15 # Freezing point of fresh water (K)
solc = 1361.0 # Solar constant (W/m^2)
rho_water = 1000.0 # Density of liquid water (kg/m^3)

# Vertical grid
p_top = 2.e+4 # Pressure at the model top (Pa)
sigma_half = np.array([0.0, 0.07, 0.18, 0.38, 0.65, 1.0]) # Interface sigma, top to surface
nz = len(sigma_half) - 1

# Default horizontal grid and timestep
default_nx = 180
default_ny = 90
default_dt = 120.0 # Model timestep (s)

# to prevent division by zero
epsilon = 1e-12
