"""
Exceptions raised by oscgrid beyond the builtin `ValueError` / `TypeError`.
"""


from __future__ import absolute_import


__all__ = ["ConfigurationError", "CapacityError", "ConsistencyError"]


class ConfigurationError(RuntimeError):
    """A prerequisite (oscillation parameters, grid, density profile,
    production heights) was not set before it was needed"""


class CapacityError(ConfigurationError):
    """The problem does not fit into the scratch arrays the kernels were
    compiled with; raise the corresponding OSCGRID_MAX_* environment variable
    before importing oscgrid"""


class ConsistencyError(RuntimeError):
    """Direct and expanded single-layer transition matrices disagree"""
