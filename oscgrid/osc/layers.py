"""
Spherically layered density profile of the Earth (or any other sphere), and
the bookkeeping of which shells a ray of given zenith-angle cosine crosses.
"""

from __future__ import absolute_import, division

import numpy as np

from oscgrid import FTYPE, ITYPE, MAX_N_LAYERS, ureg
from oscgrid.core.errors import CapacityError
from oscgrid.utils.log import logging
from oscgrid.utils.resources import find_resource


__all__ = ["DEFAULT_ELEC_FRAC", "DensityProfile"]


DEFAULT_ELEC_FRAC = 0.5
"""Electron fraction (Ye) assumed for shells without explicit composition"""


def _as_km(value):
    if isinstance(value, ureg.Quantity):
        return value.m_as("km")
    return value


class DensityProfile(object):
    """
    Density profile made of concentric spherical shells.

    Shells are stored outer-first: `radii[0]` is the radius of the sphere,
    and the shell between `radii[i + 1]` (exclusive) and `radii[i]`
    (inclusive) has density `rhos[i]` (or polynomial coefficients
    `poly_coeffs[i]`) and electron fraction `yps[i]`. Profiles given
    inner-first are reversed.

    Parameters
    ----------
    radii : sequence of float or pint.Quantity
        Shell radii in km; strictly monotonic in either direction, the
        innermost one 0 (the centre)

    rhos : sequence of float, optional
        Constant density per shell in g/cm^3. Exactly one of `rhos` and
        `poly_coeffs` must be given.

    yps : sequence of float, optional
        Electron fraction per shell; defaults to `DEFAULT_ELEC_FRAC`

    poly_coeffs : array of shape (n, 3), optional
        Coefficients (a, b, c) of the density rho(x) = a + b x + c x^2 with
        x = r / radii[0]

    """

    def __init__(self, radii, rhos=None, yps=None, poly_coeffs=None):
        radii = np.atleast_1d(np.asarray(_as_km(radii), dtype=FTYPE))
        if (rhos is None) == (poly_coeffs is None):
            raise ValueError("Specify exactly one of `rhos` and `poly_coeffs`")

        self.use_poly = poly_coeffs is not None
        if self.use_poly:
            poly_coeffs = np.atleast_2d(np.asarray(poly_coeffs, dtype=FTYPE))
            if poly_coeffs.ndim != 2 or poly_coeffs.shape[1] != 3:
                raise ValueError(
                    f"`poly_coeffs` must have shape (n, 3), got {poly_coeffs.shape}"
                )
            values = poly_coeffs
        else:
            values = np.atleast_1d(np.asarray(rhos, dtype=FTYPE))

        if yps is None:
            yps = np.full(radii.shape, DEFAULT_ELEC_FRAC, dtype=FTYPE)
        yps = np.atleast_1d(np.asarray(yps, dtype=FTYPE))

        if len(radii) == 0 or len(values) == 0 or len(yps) == 0:
            raise ValueError("Density profile arrays must not be empty")
        if len(values) != len(radii):
            raise ValueError(
                f"Got {len(values)} densities for {len(radii)} radii; sizes must match"
            )
        if len(yps) != len(radii):
            raise ValueError(
                f"Got {len(yps)} electron fractions for {len(radii)} radii;"
                " sizes must match"
            )

        need_flip = False
        if len(radii) >= 2:
            steps = np.diff(radii)
            if not (np.all(steps > 0) or np.all(steps < 0)):
                raise ValueError(f"Radii must be strictly monotonic, got {radii}")
            need_flip = steps[0] > 0

        if need_flip:
            radii = radii[::-1]
            values = values[::-1]
            yps = yps[::-1]

        if radii[0] <= 0:
            raise ValueError(f"Outer radius must be positive, got {radii[0]}")
        # the innermost shell reaches down to the centre
        if radii[-1] != 0:
            raise ValueError(f"Innermost radius must be 0, got {radii[-1]}")

        self.radii = np.ascontiguousarray(radii)
        self.yps = np.ascontiguousarray(yps)
        if self.use_poly:
            self.poly_coeffs = np.ascontiguousarray(values)
            # constant terms, for inspection only
            self.rhos = self.poly_coeffs[:, 0].copy()
        else:
            self.rhos = np.ascontiguousarray(values)
            self.poly_coeffs = np.zeros((len(radii), 3), dtype=FTYPE)

        self.coslimit = self.compute_coslimit(self.radii)
        logging.debug(
            "DensityProfile with %d radii (outer radius %.1f km, polynomial: %s)",
            len(self.radii),
            self.r_earth,
            self.use_poly,
        )

    @classmethod
    def from_file(cls, fname):
        """Load a profile from a whitespace separated text file.

        Supported formats, one row per radius (any order):

            radius  rho  ye          (constant density per shell)
            radius  a    b   c  ye   (polynomial density per shell)

        Lines starting with '#' and empty lines are ignored.

        """
        path = find_resource(fname)
        rows = []
        with open(path, "r") as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith("#"):
                    continue
                rows.append([float(x) for x in line.split()])

        if not rows:
            raise ValueError(f"No density entries found in {path}")
        n_cols = {len(row) for row in rows}
        if len(n_cols) != 1:
            raise ValueError(
                f"Inconsistent number of entries per line in {path}: {sorted(n_cols)}"
            )
        n_cols = n_cols.pop()
        data = np.array(rows, dtype=FTYPE)
        logging.debug("Found %d entries per line in %s", n_cols, path)

        if n_cols == 3:
            return cls(radii=data[:, 0], rhos=data[:, 1], yps=data[:, 2])
        if n_cols == 5:
            return cls(radii=data[:, 0], poly_coeffs=data[:, 1:4], yps=data[:, 4])
        raise ValueError(
            f"Unsupported earth model in {path}: {n_cols} entries per line"
            " (expected 3 or 5)"
        )

    @staticmethod
    def compute_coslimit(radii):
        """Cosine thresholds below which a ray crosses each (outer-first)
        radius; the outermost threshold is 0"""
        r_earth = radii[0]
        coslimit = -np.sqrt(np.clip(1.0 - np.square(radii / r_earth), 0.0, None))
        coslimit[0] = 0.0
        return coslimit.astype(FTYPE)

    @property
    def r_earth(self):
        """Radius of the outermost shell, km"""
        return self.radii[0]

    @property
    def n_radii(self):
        return len(self.radii)

    @property
    def effective_rhos(self):
        """Electron densities rho * Ye per shell (constant-density profiles)"""
        return self.rhos * self.yps

    def max_layers(self, cosines):
        """Number of shells crossed (excluding the atmosphere) per cosine.

        Raises
        ------
        CapacityError
            if any ray crosses more shells than the kernels have scratch for

        """
        cosines = np.atleast_1d(np.asarray(cosines, dtype=FTYPE))
        max_layers = np.sum(
            cosines[:, np.newaxis] < self.coslimit[np.newaxis, :], axis=1
        ).astype(ITYPE)
        if max_layers.size and max_layers.max() > MAX_N_LAYERS:
            raise CapacityError(
                f"Rays cross up to {max_layers.max()} layers, but the kernels were"
                f" compiled for MAX_N_LAYERS={MAX_N_LAYERS}; set the environment"
                " variable OSCGRID_MAX_N_LAYERS accordingly"
            )
        return max_layers

    def modify(self, radii, weights):
        """Move the shell boundaries and scale the shell densities.

        Parameters
        ----------
        radii : sequence of float
            New radii for all but the innermost (centre) entry, ordered from
            the inside out; the last one becomes the outer radius

        weights : sequence of float
            Density scale factors, ordered from the inside out, one per
            shell; the innermost weight also applies to the centre entry

        Returns
        -------
        DensityProfile
            a new, modified profile

        """
        radii = np.asarray(_as_km(radii), dtype=FTYPE)
        weights = np.asarray(weights, dtype=FTYPE)
        n_shells = self.n_radii - 1
        if len(radii) != n_shells or len(weights) != n_shells:
            raise ValueError(
                f"Expected {n_shells} radii and {n_shells} weights, got"
                f" {len(radii)} and {len(weights)}"
            )

        new_radii = self.radii.copy()
        new_radii[:n_shells] = radii[::-1]

        # outer-first scale factors, the centre entry shares the innermost one
        scale = np.append(weights[::-1], weights[0])

        if self.use_poly:
            return DensityProfile(
                radii=new_radii,
                poly_coeffs=self.poly_coeffs * scale[:, np.newaxis],
                yps=self.yps,
            )
        return DensityProfile(radii=new_radii, rhos=self.rhos * scale, yps=self.yps)

    def ray_path(self, cosine, prod_height):
        """Distances (km) and effective densities along the full path of a
        ray, from the production point to the detector, including the
        mirrored outbound half.

        Returns
        -------
        distances, densities : 1d arrays

        """
        # deferred import, the hostfuncs pull in (and compile) all kernels
        from oscgrid.osc.prob3numba.numba_osc_hostfuncs import (
            get_layer_density,
            get_layer_distance,
        )

        cosine = FTYPE(cosine)
        prod_height = FTYPE(_as_km(prod_height))
        max_layer = self.max_layers([cosine])[0]

        # atmosphere, shells down to the turning one, then back out
        n_path = max(2 * int(max_layer), 1)
        layers = np.arange(n_path, dtype=ITYPE)

        distances = get_layer_distance(
            layers, cosine, max_layer, self.radii, prod_height
        )
        densities = get_layer_density(
            layers,
            cosine,
            max_layer,
            self.radii,
            self.rhos,
            self.poly_coeffs,
            self.yps,
            ITYPE(self.use_poly),
        )
        return distances, densities
