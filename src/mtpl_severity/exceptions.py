class MTPLSeverityError(Exception):
    """Base class for pipeline errors."""


class SchemaError(MTPLSeverityError, KeyError):
    """Input table is missing required columns."""

    def __str__(self):
        return str(self.args[0]) if self.args else ""


class TransformError(MTPLSeverityError, ValueError):
    """A transformation precondition does not hold, e.g. log10 of a non-positive value."""


class ConfigError(MTPLSeverityError, ValueError):
    """Invalid pipeline configuration."""
