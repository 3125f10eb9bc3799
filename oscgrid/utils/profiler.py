"""
Tools for timing functions; output goes to the `tprofile` logger.
"""


from __future__ import absolute_import

from functools import wraps
from time import time

from oscgrid.utils.log import logging, tprofile


__all__ = ["profile"]


def profile(func):
    """Use as `@profile` to tell the `tprofile` logger to log how long
    `func` took. Enable output with e.g. `tprofile.setLevel(logging.INFO)`."""

    @wraps(func)
    def profiled_func(*args, **kwargs):
        start_t = time()
        try:
            return func(*args, **kwargs)
        finally:
            end_t = time()
            if tprofile.isEnabledFor(logging.INFO):
                tprofile.info(
                    "module %s, function %s: %.4f ms",
                    func.__module__,
                    func.__name__,
                    (end_t - start_t) * 1000,
                )

    return profiled_func
