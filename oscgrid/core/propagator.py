"""
Stateful facade around the grid driver: set oscillation parameters, a
density profile and the (cosine, energy) grid once, then calculate and read
back probabilities per neutrino type.
"""


from __future__ import absolute_import, division

import enum

import numpy as np

from oscgrid import FTYPE, ITYPE, MAX_PROD_HEIGHT_BINS, ureg
from oscgrid.core.errors import CapacityError, ConfigurationError
from oscgrid.core.grid import CONSISTENCY_CHECKS, calculate, make_bundle
from oscgrid.osc.layers import DensityProfile
from oscgrid.osc.osc_params import OscParams
from oscgrid.utils.log import logging


__all__ = ["NeutrinoType", "ProbType", "Propagator"]


class NeutrinoType(enum.IntEnum):
    """Neutrino or antineutrino"""

    NEUTRINO = 0
    ANTINEUTRINO = 1

    @property
    def nubar(self):
        """+1 for neutrinos, -1 for antineutrinos, as used by the kernels"""
        return 1 if self is NeutrinoType.NEUTRINO else -1


class ProbType(enum.IntEnum):
    """Flavour transition, value flav_in * 3 + flav_out"""

    E_E = 0
    E_M = 1
    E_T = 2
    M_E = 3
    M_M = 4
    M_T = 5
    T_E = 6
    T_M = 7
    T_T = 8

    @property
    def flav_in(self):
        return self.value // 3

    @property
    def flav_out(self):
        return self.value % 3


def _as_km(value, name):
    if isinstance(value, ureg.Quantity):
        value = value.m_as("km")
    value = float(value)
    if not np.isfinite(value) or value < 0:
        raise ValueError(f"{name} must be a finite non-negative length, got {value}")
    return value


class Propagator(object):
    """
    Oscillation probabilities on a fixed-size (cosine, energy) grid.

    Parameters
    ----------
    n_cosines, n_energies : int
        Grid size; the lists set later must have exactly these lengths

    consistency_check : None, "warn" or "raise"
        Compare direct and expanded transition matrices after every
        calculation; see `oscgrid.core.grid.calculate`

    Examples
    --------
    >>> prop = Propagator(n_cosines=100, n_energies=200)
    >>> prop.set_density_from_file("osc/PREM_4layer.dat")
    >>> prop.set_osc_params(OscParams(7.4e-5, 2.5e-3, 0.58, 0.15, 0.86))
    >>> prop.set_cosine_list(np.linspace(-1, 1, 100))
    >>> prop.set_energy_list(np.logspace(0, 2, 200))
    >>> prop.set_production_height(20.0)
    >>> prop.calculate_probabilities(NeutrinoType.NEUTRINO)
    >>> p_mumu = prop.get_probability_arr(ProbType.M_M)

    """

    def __init__(self, n_cosines, n_energies, consistency_check=None):
        n_cosines = int(n_cosines)
        n_energies = int(n_energies)
        if n_cosines < 1 or n_energies < 1:
            raise ValueError(
                f"Grid dimensions must be positive, got {n_cosines} x {n_energies}"
            )
        if consistency_check not in CONSISTENCY_CHECKS:
            raise ValueError(
                f"consistency_check must be one of {CONSISTENCY_CHECKS}, got"
                f" {consistency_check!r}"
            )
        self.n_cosines = n_cosines
        self.n_energies = n_energies
        self.consistency_check = consistency_check

        self._profile = None
        self._angles = None
        self._masses = None
        self._osc_params = None
        self._bundles = {}

        self._cosines = None
        self._energies = None
        self._max_layers = None

        self._prod_height = None
        self._n_height_bins = 0
        self._height_probs = None
        self._height_edges = None

        self._probabilities = None

    # --- density profile --- #

    @property
    def profile(self):
        """Current `DensityProfile` (None until set)"""
        return self._profile

    def set_profile(self, profile):
        """Use an existing `DensityProfile`"""
        if not isinstance(profile, DensityProfile):
            raise TypeError(f"Expected a DensityProfile, got {type(profile)}")
        self._profile = profile
        self._update_max_layers()

    def set_density(self, radii, rhos, yps=None):
        """Constant density per shell; see `DensityProfile`"""
        self.set_profile(DensityProfile(radii=radii, rhos=rhos, yps=yps))

    def set_density_poly(self, radii, a, b, c, yps=None):
        """Density rho(x) = a + b x + c x^2 per shell, x = r / outer radius"""
        a, b, c = (np.asarray(v, dtype=FTYPE) for v in (a, b, c))
        if not a.shape == b.shape == c.shape:
            raise ValueError(
                f"Coefficient lists differ in size: {a.shape}, {b.shape}, {c.shape}"
            )
        self.set_profile(
            DensityProfile(radii=radii, poly_coeffs=np.stack([a, b, c], axis=1), yps=yps)
        )

    def set_density_from_file(self, fname):
        """Load the profile from a 3- or 5-column text file (see
        `DensityProfile.from_file`)"""
        self.set_profile(DensityProfile.from_file(fname))

    def modify_earth_model(self, radii, weights):
        """Move shell boundaries and scale shell densities, see
        `DensityProfile.modify`"""
        self._require(self._profile, "density profile")
        self.set_profile(self._profile.modify(radii, weights))

    def set_chemical_composition(self, yps):
        """Electron fraction per radius, outer shell first (the stored order
        of the profile)"""
        self._require(self._profile, "density profile")
        yps = np.asarray(yps, dtype=FTYPE)
        if yps.shape != self._profile.radii.shape:
            raise ValueError(
                f"Got {yps.size} electron fractions for {self._profile.n_radii} radii"
            )
        profile = self._profile
        if profile.use_poly:
            new = DensityProfile(profile.radii, poly_coeffs=profile.poly_coeffs, yps=yps)
        else:
            new = DensityProfile(profile.radii, rhos=profile.rhos, yps=yps)
        self.set_profile(new)

    # --- oscillation parameters --- #

    @property
    def osc_params(self):
        """Current `OscParams` (None until mixing angles and masses are set)"""
        return self._osc_params

    def set_mns_matrix(self, theta12, theta13, theta23, deltacp):
        """Mixing angles and CP phase; floats in rad or pint quantities"""
        self._angles = (theta12, theta13, theta23, deltacp)
        self._update_osc_params()

    def set_neutrino_masses(self, dm12sq, dm23sq):
        """Mass splittings m_2^2 - m_1^2 and m_3^2 - m_2^2; floats in eV^2 or
        pint quantities"""
        self._masses = (dm12sq, dm23sq)
        self._update_osc_params()

    def set_osc_params(self, osc_params):
        """Set angles, phase and mass splittings at once"""
        if not isinstance(osc_params, OscParams):
            raise TypeError(f"Expected OscParams, got {type(osc_params)}")
        self._angles = (
            osc_params.theta12,
            osc_params.theta13,
            osc_params.theta23,
            osc_params.deltacp,
        )
        self._masses = (osc_params.dm12sq, osc_params.dm23sq)
        self._update_osc_params()

    def _update_osc_params(self):
        self._bundles = {}
        if self._angles is None or self._masses is None:
            return
        theta12, theta13, theta23, deltacp = self._angles
        dm12sq, dm23sq = self._masses
        self._osc_params = OscParams(
            dm12sq=dm12sq,
            dm23sq=dm23sq,
            theta12=theta12,
            theta13=theta13,
            theta23=theta23,
            deltacp=deltacp,
        )
        logging.debug("Oscillation parameters: %s", self._osc_params)

    def _bundle(self, nu_type):
        # the vacuum order only changes with the parameters: once per type
        if nu_type not in self._bundles:
            self._bundles[nu_type] = make_bundle(self._osc_params, nu_type.nubar)
        return self._bundles[nu_type]

    # --- grid --- #

    @property
    def cosines(self):
        return self._cosines

    @property
    def energies(self):
        return self._energies

    @property
    def max_layers(self):
        """Shells crossed per cosine, once both profile and cosines are set"""
        return self._max_layers

    def set_energy_list(self, energies):
        """Neutrino energies in GeV (floats or a pint quantity)"""
        if isinstance(energies, ureg.Quantity):
            energies = energies.m_as("GeV")
        energies = np.asarray(energies, dtype=FTYPE).ravel()
        if energies.size != self.n_energies:
            raise ValueError(
                f"Propagator was created for {self.n_energies} energies, got"
                f" {energies.size}"
            )
        if not np.all(np.isfinite(energies)) or np.any(energies <= 0):
            raise ValueError("Energies must be finite and positive")
        self._energies = np.ascontiguousarray(energies)

    def set_cosine_list(self, cosines):
        """Cosines of the zenith angle, negative for rays through the sphere"""
        cosines = np.asarray(cosines, dtype=FTYPE).ravel()
        if cosines.size != self.n_cosines:
            raise ValueError(
                f"Propagator was created for {self.n_cosines} cosines, got"
                f" {cosines.size}"
            )
        if np.any(np.abs(cosines) > 1):
            raise ValueError("Cosines must lie within [-1, 1]")
        self._cosines = np.ascontiguousarray(cosines)
        self._update_max_layers()

    def _update_max_layers(self):
        if self._profile is None or self._cosines is None:
            self._max_layers = None
            return
        # raises CapacityError for profiles too deep for the kernels
        self._max_layers = self._profile.max_layers(self._cosines)
        logging.trace("max layers per cosine: %s", self._max_layers)

    # --- production height --- #

    @property
    def use_averaging(self):
        """Whether probabilities are averaged over production heights"""
        return self._n_height_bins >= 1

    def set_production_height(self, height):
        """Nominal production height above the outer radius, km (float) or a
        pint length"""
        if self._cosines is None:
            raise ConfigurationError("Set the cosine list before the production height")
        self._prod_height = _as_km(height, "production height")

    def set_number_of_production_height_bins(self, n_bins):
        """Enable (n_bins >= 1) or disable (0) averaging over production
        heights; a previously set height distribution is discarded"""
        n_bins = int(n_bins)
        if n_bins < 0:
            raise ValueError(f"Number of production height bins must be >= 0, got {n_bins}")
        if n_bins > MAX_PROD_HEIGHT_BINS:
            raise CapacityError(
                f"{n_bins} production height bins exceed MAX_PROD_HEIGHT_BINS="
                f"{MAX_PROD_HEIGHT_BINS}; set the environment variable"
                " OSCGRID_MAX_PROD_HEIGHT_BINS accordingly"
            )
        self._n_height_bins = n_bins
        self._height_probs = None
        self._height_edges = None
        if n_bins >= 1:
            logging.info("Averaging over %d production height bins", n_bins)

    def set_production_height_list(self, probs, edges):
        """Production height distribution.

        Parameters
        ----------
        probs : array
            2 * 3 * n_energies * n_cosines * n_bins probabilities, indexed
            (neutrino type, flavour in, energy, cosine, bin); flat or shaped

        edges : array
            n_bins + 1 bin edges in km (or a pint length)

        """
        if not self.use_averaging:
            raise ConfigurationError(
                "Production height averaging is disabled; call"
                " set_number_of_production_height_bins first"
            )
        n_bins = self._n_height_bins
        shape = (2, 3, self.n_energies, self.n_cosines, n_bins)
        probs = np.asarray(probs, dtype=FTYPE)
        if probs.size != np.prod(shape):
            raise ValueError(
                f"Expected {np.prod(shape)} production height probabilities"
                f" {shape}, got {probs.size}"
            )
        if isinstance(edges, ureg.Quantity):
            edges = edges.m_as("km")
        edges = np.asarray(edges, dtype=FTYPE).ravel()
        if edges.size != n_bins + 1:
            raise ValueError(
                f"Expected {n_bins + 1} production height bin edges, got {edges.size}"
            )
        self._height_probs = probs.reshape(shape)
        self._height_edges = np.ascontiguousarray(edges)

    # --- calculation --- #

    @staticmethod
    def _require(value, what):
        if value is None:
            raise ConfigurationError(f"The {what} has not been set")

    def calculate_probabilities(self, nu_type):
        """Fill the probability grid for neutrinos or antineutrinos"""
        nu_type = NeutrinoType(nu_type)
        self._require(self._angles, "mixing matrix (set_mns_matrix)")
        self._require(self._masses, "mass splittings (set_neutrino_masses)")
        self._require(self._profile, "density profile")
        self._require(self._energies, "energy list")
        self._require(self._cosines, "cosine list")
        self._require(self._prod_height, "production height")

        height_probs = None
        if self.use_averaging:
            self._require(self._height_probs, "production height distribution")
            # (flav, energy, cosine, bin) -> (cosine, energy, flav, bin)
            height_probs = np.ascontiguousarray(
                self._height_probs[int(nu_type)].transpose(2, 1, 0, 3)
            )

        profile = self._profile
        if self._probabilities is None:
            self._probabilities = np.empty(
                (self.n_cosines, self.n_energies, 3, 3), dtype=FTYPE
            )
        calculate(
            self._bundle(nu_type),
            self._cosines,
            self._energies,
            profile.radii,
            profile.rhos,
            self._max_layers.astype(ITYPE),
            self._prod_height,
            use_averaging=self.use_averaging,
            height_probs=height_probs,
            height_edges=self._height_edges,
            poly_coeffs=profile.poly_coeffs if profile.use_poly else None,
            yps=profile.yps,
            out=self._probabilities,
            consistency_check=self.consistency_check,
        )

    @property
    def probabilities(self):
        """Result array, probabilities[cosine, energy, flav_in, flav_out]"""
        self._require(self._probabilities, "probability grid (calculate first)")
        return self._probabilities

    def get_probability(self, index_cosine, index_energy, prob_type):
        """Probability for one grid cell and flavour transition"""
        prob_type = ProbType(prob_type)
        if not 0 <= index_cosine < self.n_cosines or not 0 <= index_energy < self.n_energies:
            raise ValueError(
                f"Invalid indices ({index_cosine}, {index_energy}) for a"
                f" {self.n_cosines} x {self.n_energies} grid"
            )
        return float(
            self.probabilities[
                index_cosine, index_energy, prob_type.flav_in, prob_type.flav_out
            ]
        )

    def get_probability_arr(self, prob_type):
        """All probabilities of one flavour transition, energy-major: element
        index_energy * n_cosines + index_cosine"""
        prob_type = ProbType(prob_type)
        probs = self.probabilities[:, :, prob_type.flav_in, prob_type.flav_out]
        return np.ascontiguousarray(probs.T).ravel()
