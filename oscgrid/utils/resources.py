"""
Find files either on disk or among the resources shipped with oscgrid.
"""


from __future__ import absolute_import

import os

from oscgrid.utils.log import logging


__all__ = ["RESOURCES_DIR", "find_resource"]


RESOURCES_DIR = os.path.join(
    os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "resources"
)
"""Directory holding the package resources (earth models, settings)"""


def find_resource(resource, fail=True):
    """Locate `resource`.

    The path is tried as given (after expanding `~` and environment
    variables), then relative to the package resources directory.

    Parameters
    ----------
    resource : str
    fail : bool
        Raise if the resource cannot be found; otherwise return None

    Returns
    -------
    path : str or None

    Raises
    ------
    IOError
        if `fail` and the resource is not found

    """
    logging.trace('Attempting to find resource "%s"', resource)
    expanded = os.path.expandvars(os.path.expanduser(resource))
    if os.path.isfile(expanded):
        logging.trace("Found at %s", expanded)
        return expanded

    candidate = os.path.join(RESOURCES_DIR, expanded)
    if os.path.isfile(candidate):
        logging.trace("Found among package resources at %s", candidate)
        return candidate

    msg = f'Could not find resource "{resource}"'
    if fail:
        raise IOError(msg)
    logging.debug(msg)
    return None
