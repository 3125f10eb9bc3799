"""
oscgrid: three-flavour neutrino oscillation probabilities on (cosine, energy)
grids for rays through a spherically layered Earth.

Package-wide numerical types and the numba execution target are chosen here,
once, from the environment:

    OSCGRID_FTYPE   fp64 (default) | fp32
    OSCGRID_TARGET  cpu (default) | parallel | cuda

Kernel scratch capacities are compile-time constants of the numba kernels and
can be raised before import via OSCGRID_MAX_N_LAYERS and
OSCGRID_MAX_PROD_HEIGHT_BINS.
"""


from __future__ import absolute_import

import os
import sys

import numpy as np
from pint import UnitRegistry


__all__ = [
    "ureg",
    "Q_",
    "FTYPE",
    "CTYPE",
    "ITYPE",
    "TARGET",
    "MAX_N_LAYERS",
    "MAX_PROD_HEIGHT_BINS",
    "__version__",
]

__author__ = "oscgrid developers"

__license__ = """Licensed under the Apache License, Version 2.0 (the "License");
 you may not use this file except in compliance with the License.
 You may obtain a copy of the License at

 http://www.apache.org/licenses/LICENSE-2.0

 Unless required by applicable law or agreed to in writing, software
 distributed under the License is distributed on an "AS IS" BASIS,
 WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
 See the License for the specific language governing permissions and
 limitations under the License."""

__version__ = "0.3.0"


ureg = UnitRegistry()
"""Single unit registry shared by everything that handles quantities"""

Q_ = ureg.Quantity


FTYPE = np.float64
"""Global floating-point data type. C, CUDA, and Numba datatype definitions
are derived from this"""

if "OSCGRID_FTYPE" in os.environ:
    OSCGRID_FTYPE = os.environ["OSCGRID_FTYPE"]
    sys.stderr.write(f'OSCGRID_FTYPE env var is defined as: "{OSCGRID_FTYPE}"; ')
    if OSCGRID_FTYPE.strip().lower() in ["float", "float32", "single", "fp32"]:
        FTYPE = np.float32
    elif OSCGRID_FTYPE.strip().lower() in ["double", "float64", "fp64"]:
        FTYPE = np.float64
    else:
        raise ValueError(
            f'Environment var OSCGRID_FTYPE="{OSCGRID_FTYPE}" is unrecognized.'
        )

CTYPE = np.complex64 if FTYPE == np.float32 else np.complex128
"""Complex type matching FTYPE"""

ITYPE = np.int32 if FTYPE == np.float32 else np.int64
"""Signed integer type matching FTYPE"""


TARGET = "cpu"
"""numba target used for all guvectorized kernels"""

if "OSCGRID_TARGET" in os.environ:
    OSCGRID_TARGET = os.environ["OSCGRID_TARGET"].strip().lower()
    if OSCGRID_TARGET not in ["cpu", "parallel", "cuda"]:
        raise ValueError(
            f'Environment var OSCGRID_TARGET="{OSCGRID_TARGET}" is unrecognized;'
            ' must be one of "cpu", "parallel" or "cuda".'
        )
    TARGET = OSCGRID_TARGET


def _capacity_from_env(name, default):
    value = int(os.environ.get(name, default))
    if value < 1:
        raise ValueError(f"Environment var {name}={value} must be >= 1")
    return value


MAX_N_LAYERS = _capacity_from_env("OSCGRID_MAX_N_LAYERS", 16)
"""Maximum number of density shells a single ray may cross"""

MAX_PROD_HEIGHT_BINS = _capacity_from_env("OSCGRID_MAX_PROD_HEIGHT_BINS", 50)
"""Maximum number of production-height bins used for averaging"""
