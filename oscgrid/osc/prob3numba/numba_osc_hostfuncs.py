# pylint: disable = not-callable, invalid-name, too-many-arguments
"""
Host-callable wrappers of the oscillation kernels in `numba_osc_kernels`,
compiled with `guvectorize` for whichever TARGET is configured ("cpu",
"parallel" or "cuda"). The same per-cell kernel is run by every target; only
the way the broadcast loop over cells is executed differs.
"""

from __future__ import absolute_import, print_function, division

__all__ = [
    "FX",
    "CX",
    "IX",
    "propagate_grid",
    "check_transition_consistency",
    "get_vacuum_mass_order_hostfunc",
    "get_matter_eigenvalues_hostfunc",
    "get_transition_matrix_hostfunc",
    "get_expanded_transition_matrix_hostfunc",
    "get_layer_distance",
    "get_layer_density",
]

import numpy as np
from numba import guvectorize

from oscgrid import FTYPE, ITYPE, TARGET
from oscgrid.osc.prob3numba.numba_osc_kernels import (
    get_density_of_layer,
    get_matter_eigenvalues,
    get_path_length,
    get_transition_matrix,
    get_transition_matrix_expanded,
    get_traversed_distance_of_layer,
    get_vacuum_mass_order,
    osc_probs_grid_kernel,
    transition_consistency_kernel,
)


assert FTYPE in [np.float32, np.float64], str(FTYPE)

FX = "f4" if FTYPE == np.float32 else "f8"
"""Float string code to use, understood by both Numba and Numpy"""

CX = "c8" if FTYPE == np.float32 else "c16"
"""Complex string code to use, understood by both Numba and Numpy"""

IX = "i4" if ITYPE == np.int32 else "i8"
"""Signed integer string code to use, understood by both Numba and Numpy"""


# ---------------------------------------------------------------------------- #


@guvectorize(
    [
        "("
        f"{IX}, "  # nubar
        f"{FX}, "  # cosine
        f"{FX}, "  # energy
        f"{IX}, "  # max_layer
        f"{FX}[:,:], "  # dm
        f"{CX}[:,:], "  # mix
        f"{FX}[:,:,:,:,:], "  # mix_factors
        f"{IX}[:], "  # mass_order
        f"{FX}[:], "  # radii
        f"{FX}[:], "  # rhos
        f"{FX}[:,:], "  # poly_coeffs
        f"{FX}[:], "  # yps
        f"{IX}, "  # use_poly
        f"{FX}, "  # prod_height
        f"{IX}, "  # use_averaging
        f"{FX}[:,:], "  # height_probs
        f"{FX}[:], "  # height_edges
        f"{FX}[:,:]"  # probability
        ")"
    ],
    "(), (), (), (), (n,n), (n,n), (n,n,n,n,q), (n), (l), (l), (l,p), (l), (), (), (),"
    " (n,h), (g) -> (n,n)",
    target=TARGET,
)
def propagate_grid(
    nubar,
    cosine,
    energy,
    max_layer,
    dm,
    mix,
    mix_factors,
    mass_order,
    radii,
    rhos,
    poly_coeffs,
    yps,
    use_poly,
    prod_height,
    use_averaging,
    height_probs,
    height_edges,
    probability,
):
    """wrapper to run `osc_probs_grid_kernel` from host (whether TARGET
    is "cuda" or "host"); broadcast cosine and energy against each other to
    evaluate a whole grid"""
    osc_probs_grid_kernel(
        nubar,
        cosine,
        energy,
        max_layer,
        dm,
        mix,
        mix_factors,
        mass_order,
        radii,
        rhos,
        poly_coeffs,
        yps,
        use_poly,
        prod_height,
        use_averaging,
        height_probs,
        height_edges,
        probability,
    )


@guvectorize(
    [
        "("
        f"{IX}, {FX}, {FX}, {IX}, "
        f"{FX}[:,:], {CX}[:,:], {FX}[:,:,:,:,:], {IX}[:], "
        f"{FX}[:], {FX}[:], {FX}[:,:], {FX}[:], {IX}, {FX}, "
        f"{FX}[:]"
        ")"
    ],
    "(), (), (), (), (n,n), (n,n), (n,n,n,n,q), (n), (l), (l), (l,p), (l), (), () -> ()",
    target=TARGET,
)
def check_transition_consistency(
    nubar,
    cosine,
    energy,
    max_layer,
    dm,
    mix,
    mix_factors,
    mass_order,
    radii,
    rhos,
    poly_coeffs,
    yps,
    use_poly,
    prod_height,
    out,
):
    """Largest deviation between direct and expanded transition matrices
    along the ray of each cell"""
    out[0] = transition_consistency_kernel(
        nubar,
        cosine,
        energy,
        max_layer,
        dm,
        mix,
        mix_factors,
        mass_order,
        radii,
        rhos,
        poly_coeffs,
        yps,
        use_poly,
        prod_height,
    )


# ---------------------------------------------------------------------------- #


@guvectorize(
    [f"({FX}[:,:], {CX}[:,:], {IX}[:])"], "(n,n), (n,n) -> (n)", target=TARGET,
)
def get_vacuum_mass_order_hostfunc(dm, mix, mass_order):
    """wrapper to run `get_vacuum_mass_order` from host"""
    get_vacuum_mass_order(dm, mix, mass_order)


@guvectorize(
    [f"({FX}, {FX}, {IX}, {FX}[:,:], {CX}[:,:], {IX}[:], {FX}[:])"],
    "(), (), (), (n,n), (n,n), (n) -> (n)",
    target=TARGET,
)
def get_matter_eigenvalues_hostfunc(energy, rho, nubar, dm, mix, mass_order, m_mat):
    """wrapper to run `get_matter_eigenvalues` from host"""
    get_matter_eigenvalues(energy, rho, nubar, dm, mix, mass_order, m_mat)


@guvectorize(
    [
        f"({IX}, {FX}, {FX}, {FX}, {FX}, {FX}[:,:], {CX}[:,:], {FX}[:,:,:,:,:],"
        f" {IX}[:], {CX}[:,:])"
    ],
    "(), (), (), (), (), (n,n), (n,n), (n,n,n,n,q), (n) -> (n,n)",
    target=TARGET,
)
def get_transition_matrix_hostfunc(
    nubar,
    energy,
    rho,
    baseline,
    phase_offset,
    dm,
    mix,
    mix_factors,
    mass_order,
    transition_matrix,
):
    """wrapper to run `get_transition_matrix` from host"""
    get_transition_matrix(
        nubar,
        energy,
        rho,
        baseline,
        phase_offset,
        dm,
        mix,
        mix_factors,
        mass_order,
        transition_matrix,
    )


@guvectorize(
    [f"({IX}, {FX}, {FX}, {FX}, {FX}, {FX}[:,:], {CX}[:,:], {IX}[:], {CX}[:,:])"],
    "(), (), (), (), (), (n,n), (n,n), (n) -> (n,n)",
    target=TARGET,
)
def get_expanded_transition_matrix_hostfunc(
    nubar, energy, rho, baseline, phase_offset, dm, mix, mass_order, transition_matrix,
):
    """wrapper to run `get_transition_matrix_expanded` from host"""
    get_transition_matrix_expanded(
        nubar, energy, rho, baseline, phase_offset, dm, mix, mass_order, transition_matrix,
    )


# ---------------------------------------------------------------------------- #


@guvectorize(
    [f"({IX}, {FX}, {IX}, {FX}[:], {FX}, {FX}[:])"],
    "(), (), (), (l), () -> ()",
    target=TARGET,
)
def get_layer_distance(layer, cosine, max_layer, radii, prod_height, out):
    """Distance (km) travelled in path layer `layer`"""
    r_earth = radii[0]
    path_length = get_path_length(cosine, r_earth, prod_height)
    out[0] = get_traversed_distance_of_layer(
        layer, max_layer, path_length, -2.0 * cosine * r_earth, cosine, radii
    )


@guvectorize(
    [f"({IX}, {FX}, {IX}, {FX}[:], {FX}[:], {FX}[:,:], {FX}[:], {IX}, {FX}[:])"],
    "(), (), (), (l), (l), (l,p), (l), () -> ()",
    target=TARGET,
)
def get_layer_density(
    layer, cosine, max_layer, radii, rhos, poly_coeffs, yps, use_poly, out
):
    """Electron density in path layer `layer`"""
    out[0] = get_density_of_layer(
        layer, max_layer, cosine, radii, rhos, poly_coeffs, yps, use_poly
    )

