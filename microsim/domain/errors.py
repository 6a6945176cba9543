class ConfigurationError(ValueError):
    """Invalid geometry or simulation configuration, raised at construction."""
