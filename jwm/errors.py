"""Exception types raised by the weather core."""


class WeatherCoreError(Exception):
    """Base class for errors raised by the weather core."""


class ConfigurationError(WeatherCoreError):
    """Configuration is structurally invalid (wrong type or shape)."""


class ClimatologyLoadError(WeatherCoreError):
    """Climatology assets could not be read or decoded."""


class NumericalHealthError(WeatherCoreError):
    """The model state contains non-finite or out-of-range values."""
