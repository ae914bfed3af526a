"""
Exception types raised by bayeslmm.

Each failure category of the pipeline has its own type so callers can tell
a bad input table from a bad grouping index or a failed chain. All of them
subclass the builtin errors the rest of the code already raises.
"""


class SchemaError(ValueError):
    """A required column is missing or a value violates the dataset contract."""


class PackagingError(ValueError):
    """A subject or item index falls outside its declared group range."""


class BackendError(RuntimeError):
    """The sampling engine could not be initialized or failed to compile."""


class SamplingError(RuntimeError):
    """One or more chains failed and the failure was not allowed."""

    def __init__(self, message, failures=None):
        super().__init__(message)
        self.failures = list(failures or [])
