# pylint: disable = not-callable, invalid-name, too-many-arguments, too-many-locals
"""
Neutrino flavour oscillation in a layered sphere: per-cell kernels.

Based on the prob3++ / CUDAProb3 formalism (Barger et al., PRD 22 (1980)
2718): the transition amplitude through a layer of constant density is
written as a sum over the three matter eigenvalues of projector-like products
times phases, A = sum_k C_k exp(i arg_k). The expansion form is kept for the
atmospheric layer so that interference between the terms can be damped when
averaging over production heights.

All functions here are device functions (see `myjit`), callable from numba
code for TARGET "cpu", "parallel" or "cuda". Host-callable wrappers live in
`numba_osc_hostfuncs`.
"""

from __future__ import absolute_import, print_function, division

__all__ = [
    "TWO_ROOT_TWO_GF",
    "HBAR_C_FACTOR",
    "MAX_LAYER_SLOTS",
    "MAX_HEIGHT_EDGES",
    "get_cubic_roots",
    "get_vacuum_mass_order",
    "get_dms",
    "get_H_mat_mass_basis",
    "get_product",
    "get_arg",
    "get_transition_matrix",
    "get_transition_matrix_expansion",
    "expansion_to_transition_matrix",
    "get_transition_matrix_expanded",
    "get_matter_eigenvalues",
    "get_path_length",
    "get_density_of_layer",
    "get_poly_density_of_shell",
    "get_traversed_distance_of_layer",
    "get_ray_path",
    "get_len_shift_factors",
    "get_averaged_probs",
    "osc_probs_grid_kernel",
    "transition_consistency_kernel",
]

import math

import numpy as np

from oscgrid import MAX_N_LAYERS, MAX_PROD_HEIGHT_BINS
from oscgrid.utils.numba_tools import (
    myjit,
    clear_matrix,
    copy_matrix,
    identity_matrix,
    matrix_dot_matrix,
    multiply_phase_matrix,
    sinc,
    cuda,
    ctype,
    ftype,
)


TWO_ROOT_TWO_GF = 1.52588e-4
"""2*sqrt(2)*Gfermi in (eV^2-cm^3)/(mole-GeV)"""

HBAR_C_FACTOR = 2.534
"""(1/2)*(1/(h_bar*c)) in units of GeV/(eV^2-km)"""

MAX_LAYER_SLOTS = MAX_N_LAYERS + 1
"""Scratch size for per-layer quantities (atmosphere + crossed shells)"""

MAX_HEIGHT_EDGES = MAX_PROD_HEIGHT_BINS + 1
"""Scratch size for per-height-bin-edge quantities"""


# ---------------------------------------------------------------------------- #
# Matter eigenvalues
# ---------------------------------------------------------------------------- #


@myjit
def get_cubic_roots(fac, dm, mix, roots):
    """Roots of the characteristic polynomial of the (2E-scaled) Hamiltonian
    in the mass basis, in the order given by the trigonometric solution

    Parameters
    ----------
    fac : float
        -(matter potential) * 2E, i.e. negative for neutrinos in matter and
        zero in vacuum

    dm : real 2d-array
        vacuum mass splittings dm[i, j] = m_i^2 - m_j^2

    mix : complex 2d-array
        mixing matrix (conjugated for antineutrinos)

    roots : real 1d-array (empty)

    """
    u00 = mix[0, 0].real ** 2 + mix[0, 0].imag ** 2
    u01 = mix[0, 1].real ** 2 + mix[0, 1].imag ** 2
    u02 = mix[0, 2].real ** 2 + mix[0, 2].imag ** 2

    dm01 = dm[0, 1]
    dm02 = dm[0, 2]

    alpha = fac + dm01 + dm02
    beta = dm01 * dm02 + fac * (dm01 * (1.0 - u01) + dm02 * (1.0 - u02))
    gamma = fac * dm01 * dm02 * u00

    # round-off may push this below zero at degenerate points
    tmp = max(alpha * alpha - 3.0 * beta, 0.0)
    sqrt_tmp = math.sqrt(tmp)

    if tmp > 0.0:
        arg = (2.0 * alpha ** 3 - 9.0 * alpha * beta + 27.0 * gamma) / (
            2.0 * sqrt_tmp * tmp
        )
    else:
        arg = 1.0
    arg = min(max(arg, -1.0), 1.0)

    theta0 = math.acos(arg) / 3.0
    two_pi_third = 2.0 * math.pi / 3.0

    roots[0] = -2.0 / 3.0 * sqrt_tmp * math.cos(theta0) + dm[0, 0] - alpha / 3.0
    roots[1] = (
        -2.0 / 3.0 * sqrt_tmp * math.cos(theta0 - two_pi_third)
        + dm[0, 0]
        - alpha / 3.0
    )
    roots[2] = (
        -2.0 / 3.0 * sqrt_tmp * math.cos(theta0 + two_pi_third)
        + dm[0, 0]
        - alpha / 3.0
    )


@myjit
def get_vacuum_mass_order(dm, mix, mass_order):
    """Map the cubic's roots at zero matter potential onto the vacuum mass
    eigenstates: mass_order[i] is the root closest to dm[i, 0]

    Only depends on the oscillation parameters, so it is evaluated once per
    neutrino type and batch and then passed to `get_dms`.
    """
    roots = cuda.local.array(shape=(3), dtype=ftype)
    get_cubic_roots(0.0, dm, mix, roots)

    for i in range(3):
        k = 0
        best = abs(dm[i, 0] - roots[0])
        for j in range(1, 3):
            tmp = abs(dm[i, 0] - roots[j])
            if tmp < best:
                k = j
                best = tmp
        mass_order[i] = k


@myjit
def get_dms(energy, rho, nubar, dm, mix, mass_order, dm_mat_mat, dm_mat_vac):
    """Compute the matter-mass differences

    Parameters
    ----------
    energy : float
        Neutrino energy, GeV

    rho : float
        electron density (density * Ye), mol/cm^3

    nubar : int
        +1 for neutrinos, -1 for antineutrinos

    dm : real 2d-array

    mix : complex 2d-array

    mass_order : int 1d-array
        see `get_vacuum_mass_order`

    dm_mat_mat : real 2d-array (empty)
        M_i - M_j between matter eigenvalues

    dm_mat_vac : real 2d-array (empty)
        M_i - m_j between matter and vacuum eigenvalues

    """
    roots = cuda.local.array(shape=(3), dtype=ftype)
    m_mat = cuda.local.array(shape=(3), dtype=ftype)

    fac = -TWO_ROOT_TWO_GF * energy * rho
    if nubar < 0:
        fac = -fac

    get_cubic_roots(fac, dm, mix, roots)

    for i in range(3):
        m_mat[i] = roots[mass_order[i]]

    for i in range(3):
        for j in range(3):
            dm_mat_mat[i, j] = m_mat[i] - m_mat[j]
            dm_mat_vac[i, j] = m_mat[i] - dm[j, 0]


# ---------------------------------------------------------------------------- #
# Single-layer transition amplitudes
# ---------------------------------------------------------------------------- #


@myjit
def get_H_mat_mass_basis(energy, rho, nubar, mix, H_mat_mass_eigenstate_basis):
    """Matter part of 2E * H, transformed into the mass eigenstate basis:
    a * conj(U_en) * U_em

    Notes
    -----
    only the charged-current potential on electrons contributes, so only the
    first row of the mixing matrix enters
    """
    a = TWO_ROOT_TWO_GF * energy * rho
    if nubar < 0:
        a = -a

    for n in range(3):
        for m in range(3):
            H_mat_mass_eigenstate_basis[n, m] = a * mix[0, n].conjugate() * mix[0, m]


@myjit
def get_product(dm_mat_vac, dm_mat_mat, H_mat_mass_eigenstate_basis, product):
    """
    Parameters
    ----------
    dm_mat_vac : real 2d-array

    dm_mat_mat : real 2d-array

    H_mat_mass_eigenstate_basis : complex 2d-array
        already including the 2E factor

    product : complex 3d-array (empty)
        product[:, :, k] is the mass-basis projector of matter eigenstate k

    """
    H_minus_M = cuda.local.array(shape=(3, 3, 3), dtype=ctype)

    for i in range(3):
        for j in range(3):
            for k in range(3):
                H_minus_M[i, j, k] = H_mat_mass_eigenstate_basis[i, j]
                if i == j:
                    H_minus_M[i, j, k] -= dm_mat_vac[k, j]
                # also, clear product
                product[i, j, k] = 0.0

    # Calculate the product in eq.(10) of H_minus_M for j!=k
    for i in range(3):
        for j in range(3):
            for k in range(3):
                product[i, j, 0] += H_minus_M[i, k, 1] * H_minus_M[k, j, 2]
                product[i, j, 1] += H_minus_M[i, k, 2] * H_minus_M[k, j, 0]
                product[i, j, 2] += H_minus_M[i, k, 0] * H_minus_M[k, j, 1]
            product[i, j, 0] /= dm_mat_mat[0, 1] * dm_mat_mat[0, 2]
            product[i, j, 1] /= dm_mat_mat[1, 2] * dm_mat_mat[1, 0]
            product[i, j, 2] /= dm_mat_mat[2, 0] * dm_mat_mat[2, 1]


@myjit
def get_arg(baseline, energy, dm_mat_vac, phase_offset, arg):
    """Phases of the three expansion terms for a layer of length `baseline`
    (km); `phase_offset` is added to the last one"""
    for k in range(3):
        arg[k] = -HBAR_C_FACTOR * dm_mat_vac[k, 0] * baseline / energy
    arg[2] += phase_offset


@myjit
def get_transition_matrix(
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
    """Calculate neutrino flavour transition amplitude matrix for a layer of
    uniform density, in the direct (summed) form

    Parameters
    ----------
    nubar : int
        +1 for neutrinos, -1 for antineutrinos

    energy : float
        GeV

    rho : float
        electron density

    baseline : float
        km

    phase_offset : float
        extra phase on the third expansion term

    dm : real 2d-array

    mix : complex 2d-array
        Mixing matrix, already conjugated if antineutrino

    mix_factors : real 5d-array
        mixing-matrix element products, see `oscgrid.osc.osc_params.mix_factors`

    mass_order : int 1d-array

    transition_matrix : complex 2d-array (empty)
        transition_matrix[out, in], flavour basis

    """
    dm_mat_vac = cuda.local.array(shape=(3, 3), dtype=ftype)
    dm_mat_mat = cuda.local.array(shape=(3, 3), dtype=ftype)
    H_mat_mass_eigenstate_basis = cuda.local.array(shape=(3, 3), dtype=ctype)
    product = cuda.local.array(shape=(3, 3, 3), dtype=ctype)
    mass_basis = cuda.local.array(shape=(3, 3), dtype=ctype)
    arg = cuda.local.array(shape=(3), dtype=ftype)

    get_dms(energy, rho, nubar, dm, mix, mass_order, dm_mat_mat, dm_mat_vac)
    get_H_mat_mass_basis(energy, rho, nubar, mix, H_mat_mass_eigenstate_basis)
    get_product(dm_mat_vac, dm_mat_mat, H_mat_mass_eigenstate_basis, product)
    get_arg(baseline, energy, dm_mat_vac, phase_offset, arg)

    # sum of phases times projectors, still in the mass basis
    clear_matrix(mass_basis)
    for k in range(3):
        c = math.cos(arg[k]) + 1.0j * math.sin(arg[k])
        for i in range(3):
            for j in range(3):
                mass_basis[i, j] += c * product[i, j, k]

    # U . mass_basis . U^dagger through the precomputed factors
    for n in range(3):
        for m in range(3):
            re = 0.0
            im = 0.0
            for i in range(3):
                for j in range(3):
                    x_re = mass_basis[i, j].real
                    x_im = mass_basis[i, j].imag
                    re += mix_factors[n, m, i, j, 0] * x_re
                    re += mix_factors[n, m, i, j, 1] * x_im
                    im += mix_factors[n, m, i, j, 2] * x_im
                    im += mix_factors[n, m, i, j, 3] * x_re
            transition_matrix[n, m] = re + 1.0j * im


@myjit
def get_transition_matrix_expansion(
    nubar,
    energy,
    rho,
    baseline,
    phase_offset,
    dm,
    mix,
    mass_order,
    arg,
    expansion,
):
    """Transition amplitude for a layer of uniform density as the explicit
    expansion A = sum_k expansion[k] * exp(i arg[k])

    `expansion` only depends on energy, density and neutrino type, not on
    the baseline; `arg` is linear in the baseline.

    Parameters
    ----------
    arg : real 1d-array (empty)

    expansion : complex 3d-array (empty)
        expansion[k, out, in], flavour basis

    """
    dm_mat_vac = cuda.local.array(shape=(3, 3), dtype=ftype)
    dm_mat_mat = cuda.local.array(shape=(3, 3), dtype=ftype)
    H_mat_mass_eigenstate_basis = cuda.local.array(shape=(3, 3), dtype=ctype)
    product = cuda.local.array(shape=(3, 3, 3), dtype=ctype)

    get_dms(energy, rho, nubar, dm, mix, mass_order, dm_mat_mat, dm_mat_vac)
    get_H_mat_mass_basis(energy, rho, nubar, mix, H_mat_mass_eigenstate_basis)
    get_product(dm_mat_vac, dm_mat_mat, H_mat_mass_eigenstate_basis, product)
    get_arg(baseline, energy, dm_mat_vac, phase_offset, arg)

    # C_k = U . product_k . U^dagger
    for k in range(3):
        for n in range(3):
            for m in range(3):
                s = 0.0j
                for i in range(3):
                    for j in range(3):
                        s += mix[n, i] * product[i, j, k] * mix[m, j].conjugate()
                expansion[k, n, m] = s


@myjit
def expansion_to_transition_matrix(arg, expansion, transition_matrix):
    """A = sum_k expansion[k] exp(i arg[k])"""
    clear_matrix(transition_matrix)
    for k in range(3):
        multiply_phase_matrix(arg[k], expansion[k], transition_matrix)


@myjit
def get_transition_matrix_expanded(
    nubar, energy, rho, baseline, phase_offset, dm, mix, mass_order, transition_matrix,
):
    """Same amplitude as `get_transition_matrix`, but summed up from the
    explicit expansion"""
    arg = cuda.local.array(shape=(3), dtype=ftype)
    expansion = cuda.local.array(shape=(3, 3, 3), dtype=ctype)
    get_transition_matrix_expansion(
        nubar, energy, rho, baseline, phase_offset, dm, mix, mass_order, arg, expansion,
    )
    expansion_to_transition_matrix(arg, expansion, transition_matrix)


@myjit
def get_matter_eigenvalues(energy, rho, nubar, dm, mix, mass_order, m_mat):
    """Matter eigenvalues of 2E * H (eV^2) relative to m_1^2, ordered to
    connect to the vacuum mass eigenstates"""
    dm_mat_mat = cuda.local.array(shape=(3, 3), dtype=ftype)
    dm_mat_vac = cuda.local.array(shape=(3, 3), dtype=ftype)
    get_dms(energy, rho, nubar, dm, mix, mass_order, dm_mat_mat, dm_mat_vac)
    for i in range(3):
        m_mat[i] = dm_mat_vac[i, 0] + dm[0, 0]


# ---------------------------------------------------------------------------- #
# Layer traversal geometry
# ---------------------------------------------------------------------------- #


@myjit
def get_path_length(cosine, r_earth, prod_height):
    """Distance (km) from a production point at height `prod_height` above
    the sphere of radius `r_earth` to a detector on its surface"""
    return (
        math.sqrt(
            (r_earth + prod_height) ** 2 - r_earth ** 2 * (1.0 - cosine * cosine)
        )
        - r_earth * cosine
    )


@myjit
def get_poly_density_of_shell(i, max_layer, cosine, radii, poly_coeffs):
    """Mean of rho(x) = a + b x + c x^2, x = r / radii[0], along the part of
    the ray inside shell `i` (one crossing)

    With p the impact parameter and s the distance from the point of closest
    approach, r^2 = p^2 + s^2, and both int r ds and int r^2 ds are closed
    form.
    """
    r_earth = radii[0]
    p2 = r_earth * r_earth * (1.0 - cosine * cosine)

    s1 = math.sqrt(max(radii[i] * radii[i] - p2, 0.0))
    if i < max_layer - 1:
        s0 = math.sqrt(max(radii[i + 1] * radii[i + 1] - p2, 0.0))
    else:
        # turning shell: both halves are mirror images
        s0 = 0.0

    a = poly_coeffs[i, 0]
    b = poly_coeffs[i, 1]
    c = poly_coeffs[i, 2]

    length = s1 - s0
    if length <= 0.0:
        x = math.sqrt(p2 + s1 * s1) / r_earth
        return a + b * x + c * x * x

    r1 = math.sqrt(p2 + s1 * s1)
    r0 = math.sqrt(p2 + s0 * s0)

    int_r = 0.5 * (s1 * r1 - s0 * r0)
    if p2 > 0.0:
        int_r += 0.5 * p2 * math.log((s1 + r1) / (s0 + r0))
    int_r2 = p2 * length + (s1 ** 3 - s0 ** 3) / 3.0

    return (
        a
        + b * int_r / (r_earth * length)
        + c * int_r2 / (r_earth * r_earth * length)
    )


@myjit
def get_density_of_layer(
    layer, max_layer, cosine, radii, rhos, poly_coeffs, yps, use_poly
):
    """Electron density (density * Ye) in path layer `layer`

    Layer 0 is the atmosphere, layers 1..max_layer go inwards to the turning
    shell, layers beyond max_layer are the mirrored way back out.
    """
    if layer == 0:
        return 0.0

    if layer <= max_layer:
        i = layer - 1
    else:
        i = 2 * max_layer - layer - 1

    if use_poly:
        rho = get_poly_density_of_shell(i, max_layer, cosine, radii, poly_coeffs)
    else:
        rho = rhos[i]
    return rho * yps[i]


@myjit
def get_traversed_distance_of_layer(
    layer, max_layer, path_length, total_earth_length, cosine, radii
):
    """Distance (km) travelled in path layer `layer`; shells crossed twice
    get half of the in-and-out chord, the turning shell its full chord"""
    if cosine >= 0.0:
        return path_length
    if layer == 0:
        return path_length - total_earth_length

    if layer >= max_layer:
        i = 2 * max_layer - layer - 1
    else:
        i = layer - 1

    impact2 = radii[0] * radii[0] * (1.0 - cosine * cosine)
    cross_this = 2.0 * math.sqrt(max(radii[i] * radii[i] - impact2, 0.0))
    if i < max_layer - 1:
        cross_next = 2.0 * math.sqrt(max(radii[i + 1] * radii[i + 1] - impact2, 0.0))
        return 0.5 * (cross_this - cross_next)
    return cross_this


@myjit
def get_ray_path(
    cosine,
    max_layer,
    radii,
    rhos,
    poly_coeffs,
    yps,
    use_poly,
    path_length,
    total_earth_length,
    distances,
    densities,
):
    """Fill distances and densities for path layers 0..max_layer"""
    for layer in range(max_layer + 1):
        distances[layer] = get_traversed_distance_of_layer(
            layer, max_layer, path_length, total_earth_length, cosine, radii
        )
        densities[layer] = get_density_of_layer(
            layer, max_layer, cosine, radii, rhos, poly_coeffs, yps, use_poly
        )


# ---------------------------------------------------------------------------- #
# Production-height averaging
# ---------------------------------------------------------------------------- #


@myjit
def get_len_shift_factors(
    cosine,
    max_layer,
    total_earth_length,
    radii,
    arg_atm,
    distance_atm,
    height_probs,
    height_edges,
    factors,
):
    """Decoherence factors between pairs of atmospheric expansion terms

    factors[k, j, f] = sum_b p_b(f) sinc(D hw_b / 2) exp(i D hm_b) for k != j,
    with D the difference of the phase slopes d(arg)/d(distance) of terms k
    and j, and hm_b, hw_b the mean and width of the atmospheric distance over
    height bin b; i.e. exp(i D d) averaged over a distance d uniformly
    distributed within each bin. Hermitian in (k, j), 1 on the diagonal.

    Parameters
    ----------
    height_probs : real 2d-array
        height_probs[f, b], probability of bin b for initial flavour f

    height_edges : real 1d-array
        bin edges (km), one more than bins

    factors : complex 3d-array (empty)

    """
    darg = cuda.local.array(shape=(3), dtype=ftype)
    atm_lengths = cuda.local.array(shape=(MAX_HEIGHT_EDGES), dtype=ftype)

    n_bins = height_probs.shape[1]
    r_earth = radii[0]

    for k in range(3):
        if distance_atm == 0.0:
            darg[k] = 0.0
        else:
            darg[k] = arg_atm[k] / distance_atm

    for b in range(n_bins + 1):
        path_length = get_path_length(cosine, r_earth, height_edges[b])
        atm_lengths[b] = get_traversed_distance_of_layer(
            0, max_layer, path_length, total_earth_length, cosine, radii
        )

    for k in range(3):
        for j in range(3):
            for f in range(3):
                if k == j:
                    factors[k, j, f] = 1.0
                else:
                    factors[k, j, f] = 0.0

    for k in range(3):
        for j in range(k):
            d = darg[k] - darg[j]
            for b in range(n_bins):
                hw = atm_lengths[b + 1] - atm_lengths[b]
                hm = 0.5 * (atm_lengths[b + 1] + atm_lengths[b])
                s = sinc(0.5 * d * hw)
                c = s * math.cos(d * hm) + 1.0j * s * math.sin(d * hm)
                for f in range(3):
                    factors[k, j, f] += height_probs[f, b] * c
            for f in range(3):
                factors[j, k, f] = factors[k, j, f].conjugate()


@myjit
def get_averaged_probs(matter, atm_expansion, factors, probability):
    """Reduce the amplitude, expanded in the atmospheric-layer terms, to
    probabilities with damped interference between the terms

    Parameters
    ----------
    matter : complex 2d-array
        transition amplitude of everything below the atmosphere

    atm_expansion : complex 3d-array
        see `get_transition_matrix_expansion`

    factors : complex 3d-array
        see `get_len_shift_factors`

    probability : real 2d-array (empty)
        probability[in, out]

    """
    products = cuda.local.array(shape=(3, 3, 3), dtype=ctype)

    for k in range(3):
        matrix_dot_matrix(matter, atm_expansion[k], products[k])

    for i in range(3):
        for o in range(3):
            p = 0.0
            for k in range(3):
                amp = products[k, o, i]
                p += amp.real * amp.real + amp.imag * amp.imag
            for k in range(3):
                for j in range(k):
                    cross = (
                        products[k, o, i] * products[j, o, i].conjugate() * factors[k, j, i]
                    )
                    p += 2.0 * cross.real
            probability[i, o] = p


# ---------------------------------------------------------------------------- #
# Per-cell kernels
# ---------------------------------------------------------------------------- #


@myjit
def osc_probs_grid_kernel(
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
    """Calculate oscillation probabilities for one (cosine, energy) cell

    Parameters
    ----------
    nubar : int
        +1 for neutrinos, -1 for antineutrinos

    cosine : float
        cosine of the zenith angle; negative for rays through the sphere

    energy : float
        GeV

    max_layer : int
        number of shells crossed on the way in

    dm, mix, mix_factors, mass_order :
        oscillation parameters, see `get_transition_matrix`

    radii, rhos, poly_coeffs, yps, use_poly :
        density profile, outer shell first

    prod_height : float
        nominal production height, km

    use_averaging : int
        whether to average over the production-height distribution

    height_probs : real 2d-array
        [flavour_in, bin]

    height_edges : real 1d-array
        km

    probability : real 2d-array (empty)
        probability[in, out]

    Notes
    -----
    Only the path down to the turning shell is evaluated; the amplitude of
    the shells between the atmosphere and the turning shell is accumulated
    once more (`core_to_mantle`) to account for the way back out.

    """
    distances = cuda.local.array(shape=(MAX_LAYER_SLOTS), dtype=ftype)
    densities = cuda.local.array(shape=(MAX_LAYER_SLOTS), dtype=ftype)

    transition_matrix = cuda.local.array(shape=(3, 3), dtype=ctype)
    core_to_mantle = cuda.local.array(shape=(3, 3), dtype=ctype)
    final = cuda.local.array(shape=(3, 3), dtype=ctype)
    matter = cuda.local.array(shape=(3, 3), dtype=ctype)
    tmp = cuda.local.array(shape=(3, 3), dtype=ctype)

    atm_arg = cuda.local.array(shape=(3), dtype=ftype)
    atm_expansion = cuda.local.array(shape=(3, 3, 3), dtype=ctype)

    r_earth = radii[0]
    total_earth_length = -2.0 * cosine * r_earth
    path_length = get_path_length(cosine, r_earth, prod_height)

    get_ray_path(
        cosine,
        max_layer,
        radii,
        rhos,
        poly_coeffs,
        yps,
        use_poly,
        path_length,
        total_earth_length,
        distances,
        densities,
    )

    identity_matrix(core_to_mantle)
    identity_matrix(matter)

    # loop from the atmosphere to the innermost crossed layer
    for layer in range(max_layer + 1):
        if layer == 0:
            get_transition_matrix_expansion(
                nubar,
                energy,
                densities[0],
                distances[0],
                0.0,
                dm,
                mix,
                mass_order,
                atm_arg,
                atm_expansion,
            )
            expansion_to_transition_matrix(atm_arg, atm_expansion, final)
            continue

        get_transition_matrix(
            nubar,
            energy,
            densities[layer],
            distances[layer],
            0.0,
            dm,
            mix,
            mix_factors,
            mass_order,
            transition_matrix,
        )

        matrix_dot_matrix(transition_matrix, final, tmp)
        copy_matrix(tmp, final)
        matrix_dot_matrix(transition_matrix, matter, tmp)
        copy_matrix(tmp, matter)

        # not the innermost layer: it is crossed again on the way out
        if layer < max_layer:
            matrix_dot_matrix(core_to_mantle, transition_matrix, tmp)
            copy_matrix(tmp, core_to_mantle)

    matrix_dot_matrix(core_to_mantle, final, tmp)
    copy_matrix(tmp, final)

    if not use_averaging:
        for i in range(3):
            for o in range(3):
                amp = final[o, i]
                probability[i, o] = amp.real * amp.real + amp.imag * amp.imag
        return

    matrix_dot_matrix(core_to_mantle, matter, tmp)
    copy_matrix(tmp, matter)

    factors = cuda.local.array(shape=(3, 3, 3), dtype=ctype)
    get_len_shift_factors(
        cosine,
        max_layer,
        total_earth_length,
        radii,
        atm_arg,
        distances[0],
        height_probs,
        height_edges,
        factors,
    )
    get_averaged_probs(matter, atm_expansion, factors, probability)


@myjit
def transition_consistency_kernel(
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
):
    """Largest deviation, over all layers of the ray and all real and
    imaginary parts, between the direct and the expanded transition matrix"""
    distances = cuda.local.array(shape=(MAX_LAYER_SLOTS), dtype=ftype)
    densities = cuda.local.array(shape=(MAX_LAYER_SLOTS), dtype=ftype)
    direct = cuda.local.array(shape=(3, 3), dtype=ctype)
    expanded = cuda.local.array(shape=(3, 3), dtype=ctype)

    r_earth = radii[0]
    total_earth_length = -2.0 * cosine * r_earth
    path_length = get_path_length(cosine, r_earth, prod_height)

    get_ray_path(
        cosine,
        max_layer,
        radii,
        rhos,
        poly_coeffs,
        yps,
        use_poly,
        path_length,
        total_earth_length,
        distances,
        densities,
    )

    deviation = 0.0
    for layer in range(max_layer + 1):
        get_transition_matrix(
            nubar,
            energy,
            densities[layer],
            distances[layer],
            0.0,
            dm,
            mix,
            mix_factors,
            mass_order,
            direct,
        )
        get_transition_matrix_expanded(
            nubar,
            energy,
            densities[layer],
            distances[layer],
            0.0,
            dm,
            mix,
            mass_order,
            expanded,
        )
        for i in range(3):
            for j in range(3):
                deviation = max(deviation, abs(direct[i, j].real - expanded[i, j].real))
                deviation = max(deviation, abs(direct[i, j].imag - expanded[i, j].imag))

    return deviation
