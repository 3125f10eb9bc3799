"""
Utilities for comparing things.
"""


from __future__ import absolute_import, division

import numpy as np

from oscgrid import FTYPE


__all__ = ["FTYPE_PREC", "EQUALITY_PREC", "ALLCLOSE_KW", "complex_allclose"]


FTYPE_PREC = np.finfo(FTYPE).eps
"""Machine precision ("eps") for FTYPE"""

EQUALITY_PREC = 1e-9 if FTYPE == np.float64 else 1e-4
"""Tolerance within which two independently computed numbers are considered
equal, e.g. the direct and expanded forms of a transition matrix"""

ALLCLOSE_KW = dict(rtol=EQUALITY_PREC, atol=FTYPE_PREC, equal_nan=True)
"""Keyword args to pass to all calls to numpy.allclose"""


def complex_allclose(a, b, **kwargs):
    """Compare whether magnitude and phase of complex arrays are all close"""
    a = np.asarray(a)
    b = np.asarray(b)
    if a.shape != b.shape:
        return False
    mag_a, mag_b = np.absolute(a), np.absolute(b)
    if not np.allclose(mag_a, mag_b, **kwargs):
        return False
    # phases are ill-defined for vanishing magnitudes
    mask = (mag_a > FTYPE_PREC) & (mag_b > FTYPE_PREC)
    ang_diff = np.angle(a[mask] * np.conj(b[mask]))
    tol = kwargs.get("atol", ALLCLOSE_KW["atol"]) + kwargs.get(
        "rtol", ALLCLOSE_KW["rtol"]
    )
    return bool(np.all(np.abs(ang_diff) <= tol))
