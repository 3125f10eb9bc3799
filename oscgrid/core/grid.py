"""
Grid driver: evaluate oscillation probabilities on the outer product of a
cosine and an energy list.

All oscillation parameters a batch needs are collected once into an immutable
`OscPhysicsBundle`; the per-cell kernel is then broadcast over the grid by
the guvectorized `propagate_grid`, on whichever TARGET oscgrid was configured
for.
"""


from __future__ import absolute_import, division

from collections import namedtuple

import numpy as np

from oscgrid import CTYPE, FTYPE, ITYPE, MAX_N_LAYERS, MAX_PROD_HEIGHT_BINS
from oscgrid.core.errors import CapacityError, ConsistencyError
from oscgrid.osc.layers import DEFAULT_ELEC_FRAC
from oscgrid.osc.osc_params import mix_factors
from oscgrid.osc.prob3numba.numba_osc_hostfuncs import (
    check_transition_consistency,
    get_vacuum_mass_order_hostfunc,
    propagate_grid,
)
from oscgrid.utils.comparisons import EQUALITY_PREC
from oscgrid.utils.log import logging
from oscgrid.utils.profiler import profile


__all__ = [
    "CONSISTENCY_CHECKS",
    "OscPhysicsBundle",
    "make_bundle",
    "calculate",
    "transition_consistency",
]


CONSISTENCY_CHECKS = (None, "warn", "raise")
"""Allowed values for the `consistency_check` argument of `calculate`"""


OscPhysicsBundle = namedtuple(
    "OscPhysicsBundle", ["nubar", "dm", "mix", "mix_factors", "mass_order"]
)
OscPhysicsBundle.__doc__ = """Read-only oscillation inputs shared by all cells of a batch

nubar : int
    +1 for neutrinos, -1 for antineutrinos

dm : real array (3, 3)
    vacuum mass splittings

mix : complex array (3, 3)
    mixing matrix, complex conjugated for antineutrinos

mix_factors : real array (3, 3, 3, 3, 4)
    see `oscgrid.osc.osc_params.mix_factors`

mass_order : int array (3,)
    vacuum order of the eigenvalue solver's roots
"""


def make_bundle(osc_params, nubar):
    """Collect everything the kernels need from `osc_params` for one
    neutrino type

    Parameters
    ----------
    osc_params : oscgrid.osc.osc_params.OscParams
    nubar : int
        +1 for neutrinos, -1 for antineutrinos

    Returns
    -------
    OscPhysicsBundle

    """
    if nubar not in (-1, 1):
        raise ValueError(f"nubar must be +1 or -1, got {nubar}")

    dm = np.ascontiguousarray(osc_params.dm_matrix, dtype=FTYPE)
    mix = osc_params.mix_matrix_complex
    if nubar < 0:
        mix = mix.conj()
    mix = np.ascontiguousarray(mix, dtype=CTYPE)

    mass_order = get_vacuum_mass_order_hostfunc(dm, mix).astype(ITYPE)
    logging.trace("vacuum mass order for nubar=%d: %s", nubar, mass_order)

    return OscPhysicsBundle(
        nubar=ITYPE(nubar),
        dm=dm,
        mix=mix,
        mix_factors=np.ascontiguousarray(mix_factors(mix), dtype=FTYPE),
        mass_order=mass_order,
    )


def _profile_arrays(radii, rhos, poly_coeffs, yps):
    radii = np.ascontiguousarray(radii, dtype=FTYPE)
    n_radii = len(radii)
    if n_radii == 0:
        raise ValueError("Need at least one radius")

    use_poly = poly_coeffs is not None
    if rhos is None:
        if not use_poly:
            raise ValueError("Need either `rhos` or `poly_coeffs`")
        rhos = np.zeros(n_radii, dtype=FTYPE)
    rhos = np.ascontiguousarray(rhos, dtype=FTYPE)

    if use_poly:
        poly_coeffs = np.ascontiguousarray(poly_coeffs, dtype=FTYPE)
    else:
        poly_coeffs = np.zeros((n_radii, 3), dtype=FTYPE)

    if yps is None:
        yps = np.full(n_radii, DEFAULT_ELEC_FRAC, dtype=FTYPE)
    yps = np.ascontiguousarray(yps, dtype=FTYPE)

    if rhos.shape != (n_radii,) or yps.shape != (n_radii,):
        raise ValueError(
            f"radii, rhos and yps must have equal length, got {n_radii},"
            f" {rhos.shape} and {yps.shape}"
        )
    if poly_coeffs.shape != (n_radii, 3):
        raise ValueError(
            f"poly_coeffs must have shape ({n_radii}, 3), got {poly_coeffs.shape}"
        )
    return radii, rhos, poly_coeffs, yps, ITYPE(use_poly)


def _height_arrays(use_averaging, height_probs, height_edges, n_cosines, n_energies):
    if not use_averaging:
        # placeholders, never read by the kernel
        return (
            np.zeros((1, 1, 3, 1), dtype=FTYPE),
            np.zeros(2, dtype=FTYPE),
        )

    if height_probs is None or height_edges is None:
        raise ValueError(
            "Production height averaging requested but no height distribution given"
        )
    height_edges = np.ascontiguousarray(height_edges, dtype=FTYPE)
    n_bins = len(height_edges) - 1
    if n_bins < 1:
        raise ValueError("Need at least two production height bin edges")
    if n_bins > MAX_PROD_HEIGHT_BINS:
        raise CapacityError(
            f"{n_bins} production height bins exceed MAX_PROD_HEIGHT_BINS="
            f"{MAX_PROD_HEIGHT_BINS}; set the environment variable"
            " OSCGRID_MAX_PROD_HEIGHT_BINS accordingly"
        )

    height_probs = np.asarray(height_probs, dtype=FTYPE)
    expected = (n_cosines, n_energies, 3, n_bins)
    if height_probs.shape != expected:
        raise ValueError(
            f"height_probs must have shape {expected} (cosine, energy, flavour,"
            f" bin), got {height_probs.shape}"
        )
    return np.ascontiguousarray(height_probs), height_edges


@profile
def calculate(
    bundle,
    cosines,
    energies,
    radii,
    rhos,
    max_layers,
    prod_height,
    use_averaging=False,
    height_probs=None,
    height_edges=None,
    poly_coeffs=None,
    yps=None,
    out=None,
    consistency_check=None,
):
    """Oscillation probabilities for every (cosine, energy) pair

    Parameters
    ----------
    bundle : OscPhysicsBundle
        see `make_bundle`

    cosines : 1d array, length n_cosines
        cosine of the zenith angle

    energies : 1d array, length n_energies
        GeV

    radii, rhos : 1d arrays
        density profile, outer shell first (see `DensityProfile`); `rhos` may
        be None for polynomial profiles

    max_layers : int 1d array, length n_cosines
        shells crossed per cosine (`DensityProfile.max_layers`)

    prod_height : float
        nominal production height above the outer radius, km

    use_averaging : bool
        average over the production height distribution

    height_probs : array (n_cosines, n_energies, 3, n_bins), optional
        probability of each height bin per cell and initial flavour

    height_edges : 1d array (n_bins + 1), optional
        height bin edges, km

    poly_coeffs : array (n_radii, 3), optional
        polynomial density coefficients; switches to polynomial densities

    yps : 1d array, optional
        electron fraction per shell

    out : array (n_cosines, n_energies, 3, 3), optional
        filled in place if given

    consistency_check : None, "warn" or "raise"
        additionally compare direct and expanded transition matrices along
        every ray

    Returns
    -------
    probability : array (n_cosines, n_energies, 3, 3)
        probability[c, e, flav_in, flav_out]

    """
    if consistency_check not in CONSISTENCY_CHECKS:
        raise ValueError(
            f"consistency_check must be one of {CONSISTENCY_CHECKS}, got"
            f" {consistency_check!r}"
        )

    cosines = np.ascontiguousarray(cosines, dtype=FTYPE)
    energies = np.ascontiguousarray(energies, dtype=FTYPE)
    max_layers = np.ascontiguousarray(max_layers, dtype=ITYPE)
    if cosines.ndim != 1 or energies.ndim != 1:
        raise ValueError("cosines and energies must be 1d arrays")
    if max_layers.shape != cosines.shape:
        raise ValueError(
            f"Got {max_layers.shape} max_layers for {cosines.shape} cosines"
        )
    n_cosines, n_energies = len(cosines), len(energies)

    radii, rhos, poly_coeffs, yps, use_poly = _profile_arrays(
        radii, rhos, poly_coeffs, yps
    )

    if max_layers.size:
        if max_layers.max() > MAX_N_LAYERS:
            raise CapacityError(
                f"Rays cross up to {max_layers.max()} layers, but the kernels"
                f" were compiled for MAX_N_LAYERS={MAX_N_LAYERS}"
            )
        if max_layers.min() < 0 or max_layers.max() >= len(radii):
            raise ValueError(
                f"max_layers must lie in [0, {len(radii) - 1}] for {len(radii)}"
                " radii"
            )

    height_probs, height_edges = _height_arrays(
        use_averaging, height_probs, height_edges, n_cosines, n_energies
    )

    shape = (n_cosines, n_energies, 3, 3)
    if out is None:
        out = np.empty(shape, dtype=FTYPE)
    elif out.shape != shape or out.dtype != FTYPE:
        raise ValueError(
            f"out must be a {FTYPE.__name__} array of shape {shape}, got"
            f" {out.dtype} {out.shape}"
        )

    logging.debug(
        "Calculating %d x %d grid (nubar=%d, averaging=%s, polynomial=%s)",
        n_cosines,
        n_energies,
        bundle.nubar,
        bool(use_averaging),
        bool(use_poly),
    )

    if n_cosines == 0 or n_energies == 0:
        return out

    propagate_grid(
        bundle.nubar,
        cosines[:, np.newaxis],
        energies[np.newaxis, :],
        max_layers[:, np.newaxis],
        bundle.dm,
        bundle.mix,
        bundle.mix_factors,
        bundle.mass_order,
        radii,
        rhos,
        poly_coeffs,
        yps,
        use_poly,
        FTYPE(prod_height),
        ITYPE(bool(use_averaging)),
        height_probs,
        height_edges,
        out=out,
    )

    if consistency_check is not None:
        deviation = transition_consistency(
            bundle,
            cosines,
            energies,
            radii,
            rhos,
            max_layers,
            prod_height,
            poly_coeffs=poly_coeffs if use_poly else None,
            yps=yps,
        )
        if deviation > EQUALITY_PREC:
            msg = (
                "Direct and expanded transition matrices differ by up to"
                f" {deviation:.3e} (tolerance {EQUALITY_PREC:.1e})"
            )
            if consistency_check == "raise":
                raise ConsistencyError(msg)
            logging.warning(msg)
        else:
            logging.debug("Transition matrix consistency: max deviation %.3e", deviation)

    return out


def transition_consistency(
    bundle,
    cosines,
    energies,
    radii,
    rhos,
    max_layers,
    prod_height,
    poly_coeffs=None,
    yps=None,
):
    """Largest deviation between the direct and the expanded form of the
    single-layer transition matrices along all rays of the grid"""
    cosines = np.ascontiguousarray(cosines, dtype=FTYPE)
    energies = np.ascontiguousarray(energies, dtype=FTYPE)
    max_layers = np.ascontiguousarray(max_layers, dtype=ITYPE)
    radii, rhos, poly_coeffs, yps, use_poly = _profile_arrays(
        radii, rhos, poly_coeffs, yps
    )
    if cosines.size == 0 or energies.size == 0:
        return 0.0

    deviations = check_transition_consistency(
        bundle.nubar,
        cosines[:, np.newaxis],
        energies[np.newaxis, :],
        max_layers[:, np.newaxis],
        bundle.dm,
        bundle.mix,
        bundle.mix_factors,
        bundle.mass_order,
        radii,
        rhos,
        poly_coeffs,
        yps,
        use_poly,
        FTYPE(prod_height),
    )
    return float(np.max(deviations))
