# pylint: disable = invalid-name, exec-used
"""
Numba tools

This is a colection of functions used for numba functions
that work for targets cpu as well as cuda
"""

from __future__ import absolute_import, print_function, division

__all__ = [
    "cuda",
    "ctype",
    "ftype",
    "myjit",
    "matrix_dot_matrix",
    "clear_matrix",
    "copy_matrix",
    "identity_matrix",
    "multiply_phase_matrix",
    "sinc",
]

import inspect
import math

import numpy as np
from numba import njit

from oscgrid import FTYPE, TARGET
from oscgrid.utils.log import logging


if TARGET == "cuda":
    from numba import cuda
else:
    cuda = lambda: None
    cuda.jit = lambda x: x

if FTYPE == np.float64:
    ctype = np.complex128
    ftype = np.float64
elif FTYPE == np.float32:
    ctype = np.complex64
    ftype = np.float32
else:
    raise TypeError(str(FTYPE))


def myjit(func):
    """
    Decorator to assign the right jit for different targets
    In case of non-cuda targets, all instances of `cuda.local.array`
    are replaced by `np.empty`. This is a dirty fix, hopefully in the
    near future numba will support numpy array allocation and this will
    not be necessary anymore

    Parameters
    ----------
    func : callable

    Returns
    -------
    new_nb_func: numba callable
        Refactored version of `func` but with `cuda.local.array` replaced by
        `np.empty` if `TARGET == "cpu"`. For either TARGET, the returned
        function will be callable within numba code for that target.

    """
    # pylint: disable = exec-used
    if TARGET == "cuda":
        new_nb_func = cuda.jit(func, device=True)

    else:
        source = inspect.getsource(func).splitlines()
        assert source[0].strip().startswith("@myjit"), source[0]
        source = "\n".join(source[1:]) + "\n"
        source = source.replace("cuda.local.array", "np.empty")
        # the rewritten function must see the globals of the module it was
        # defined in, so that it can call other device functions from there
        namespace = {}
        exec(compile(source, inspect.getsourcefile(func), "exec"), func.__globals__, namespace)
        new_py_func = namespace[func.__name__]
        new_nb_func = njit(new_py_func, error_model="numpy")

    logging.trace("myjit compiled %s for target %s", func.__name__, TARGET)
    return new_nb_func


@myjit
def matrix_dot_matrix(A, B, C):
    """dot-product of two 2d arrays
    C = A * B
    """
    for j in range(B.shape[1]):
        for i in range(A.shape[0]):
            C[i, j] = 0.0
            for n in range(B.shape[0]):
                C[i, j] += A[i, n] * B[n, j]


@myjit
def clear_matrix(A):
    """clear out 2d array"""
    for i in range(A.shape[0]):
        for j in range(A.shape[1]):
            A[i, j] = 0.0


@myjit
def copy_matrix(A, B):
    """copy elemnts of 2d array A to array B"""
    for i in range(A.shape[0]):
        for j in range(A.shape[1]):
            B[i, j] = A[i, j]


@myjit
def identity_matrix(A):
    """set square 2d array A to the identity"""
    for i in range(A.shape[0]):
        for j in range(A.shape[1]):
            if i == j:
                A[i, j] = 1.0
            else:
                A[i, j] = 0.0


@myjit
def multiply_phase_matrix(phase, A, B):
    """accumulate exp(i * phase) * A onto B
    B += exp(i phase) A
    """
    c = math.cos(phase) + 1.0j * math.sin(phase)
    for i in range(A.shape[0]):
        for j in range(A.shape[1]):
            B[i, j] += c * A[i, j]


@myjit
def sinc(x):
    """sin(x) / x, continued to 1 at x = 0"""
    if abs(x) < 1e-8:
        return 1.0
    return math.sin(x) / x
