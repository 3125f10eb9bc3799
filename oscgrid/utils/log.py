"""
Logging for oscgrid. Import `logging` from here (not from the standard
library) so that the package-wide configuration and the extra TRACE level
are in place; use `set_verbosity` to switch levels from scripts and tests.

The `tprofile` logger receives timing information from
`oscgrid.utils.profiler.profile`.
"""


from __future__ import absolute_import

import enum
import logging
import logging.config


__all__ = ["Levels", "logging", "set_verbosity", "tprofile"]


# Add a trace level
logging.TRACE = 5
logging.addLevelName(logging.TRACE, "TRACE")


def trace(self, message, *args, **kws):
    """Log at TRACE level, i.e. below DEBUG"""
    if self.isEnabledFor(logging.TRACE):
        self._log(logging.TRACE, message, args, **kws)  # pylint: disable=protected-access


logging.Logger.trace = trace
logging.RootLogger.trace = trace
logging.trace = logging.root.trace


LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {"format": "[%(levelname)10s] %(message)s"},
        "profile": {"format": "[ PROFILE  ] %(message)s"},
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "simple",
            "stream": "ext://sys.stdout",
        },
        "profile_console": {
            "class": "logging.StreamHandler",
            "formatter": "profile",
            "stream": "ext://sys.stdout",
        },
    },
    "loggers": {
        "tprofile": {
            "level": "WARNING",
            "handlers": ["profile_console"],
            "propagate": False,
        },
    },
    "root": {"level": "WARNING", "handlers": ["console"]},
}

logging.config.dictConfig(LOGGING_CONFIG)

tprofile = logging.getLogger("tprofile")
"""Logger for timing information"""


class Levels(enum.IntEnum):
    """Logging levels / int values we use in oscgrid in `set_verbosity`"""

    WARN = 0
    INFO = 1
    DEBUG = 2
    TRACE = 3


def set_verbosity(verbosity):
    """Overrides the verbosity level of the root logger.

    Parameters
    ----------
    verbosity : int or Levels
        0 (WARN), 1 (INFO), 2 (DEBUG) or 3 (TRACE); `None` leaves the level
        untouched

    """
    if verbosity is None:
        return

    levels = {
        Levels.WARN: logging.WARN,
        Levels.INFO: logging.INFO,
        Levels.DEBUG: logging.DEBUG,
        Levels.TRACE: logging.TRACE,
    }
    try:
        level = levels[Levels(verbosity)]
    except ValueError:
        raise ValueError(
            f"Verbosity level {verbosity} not supported, choose from"
            f" {[int(l) for l in Levels]}"
        ) from None

    logging.root.setLevel(level)
