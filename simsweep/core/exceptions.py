"""Exception types raised by simsweep."""


class ConfigurationError(ValueError):
    """Raised when a sweep or its configuration cannot be run at all.

    This is the only error that halts a sweep. It is raised before the first
    run, e.g. for a non-positive axis step, an unknown parameter name or an
    engine factory that cannot be loaded.
    """
