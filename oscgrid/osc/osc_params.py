# author: oscgrid developers
"""
OscParams: Characterize neutrino oscillation parameters
           (mixing angles, Dirac-type CP-violating phase, mass splittings)
"""

from __future__ import absolute_import, division

import numpy as np

from oscgrid import CTYPE, FTYPE, ureg
from oscgrid.utils.log import logging


__all__ = ["OscParams", "mix_factors"]


DEGENERACY_SHIFT = 5.0e-9
"""Shift in eV^2 applied to break exactly degenerate mass splittings"""


def _as_rad(value):
    """Accept plain floats (radians) or pint angle quantities"""
    if isinstance(value, ureg.Quantity):
        return float(value.m_as("rad"))
    return float(value)


def _as_ev2(value):
    """Accept plain floats (eV^2) or pint quantities"""
    if isinstance(value, ureg.Quantity):
        return float(value.m_as("eV**2"))
    return float(value)


class OscParams(object):
    """
    Holds neutrino oscillation parameters, i.e., mixing angles, squared-mass
    differences, and a Dirac-type CPV phase. The neutrino mixing (PMNS) matrix
    constructed from these parameters is given in the standard parameterization.

    Parameters
    ----------
    dm12sq : float or pint.Quantity
        m_2^2 - m_1^2, expected in [eV^2] if given as float

    dm23sq : float or pint.Quantity
        m_3^2 - m_2^2, expected in [eV^2] if given as float. Negative for the
        inverted mass ordering.

    theta12, theta13, theta23 : float or pint.Quantity
        Mixing angles, in [rad] if given as float

    deltacp : float or pint.Quantity
        Value of CPV phase, in [rad] if given as float


    Attributes
    ----------
    mix_matrix : 3d float array of shape (3, 3, 2)
        Neutrino mixing (PMNS) matrix in standard parameterization. The third
        dimension holds the real and imaginary parts of each matrix element.

    mix_matrix_complex : 2d complex array of shape (3, 3)

    dm_matrix : 2d float array of shape (3, 3)
        Antisymmetric matrix of squared-mass differences in vacuum,
        dm_matrix[i, j] = m_i^2 - m_j^2

    """

    def __init__(self, dm12sq, dm23sq, theta12, theta13, theta23, deltacp=0.0):
        self.dm12sq = dm12sq
        self.dm23sq = dm23sq
        self.theta12 = theta12
        self.theta13 = theta13
        self.theta23 = theta23
        self.deltacp = deltacp

    @classmethod
    def from_dm31(cls, dm21, dm31, theta12, theta13, theta23, deltacp=0.0):
        """Instantiate from the (dm21, dm31) pair commonly quoted by global
        fits; dm23 = dm31 - dm21"""
        dm21 = _as_ev2(dm21)
        dm31 = _as_ev2(dm31)
        return cls(dm21, dm31 - dm21, theta12, theta13, theta23, deltacp)

    def __repr__(self):
        return (
            f"{self.__class__.__name__}(dm12sq={self._dm12sq!r},"
            f" dm23sq={self._dm23sq!r}, theta12={self._theta12!r},"
            f" theta13={self._theta13!r}, theta23={self._theta23!r},"
            f" deltacp={self._deltacp!r})"
        )

    # --- angles --- #

    @staticmethod
    def _check_angle(name, value):
        if not np.isfinite(value):
            raise ValueError(f"{name} must be finite, got {value}")
        if not -np.pi <= value <= np.pi:
            logging.warning(
                "%s = %.6g rad lies outside [-pi, pi]; using it as given", name, value
            )

    @property
    def theta12(self):
        """1-2 mixing angle"""
        return self._theta12

    @theta12.setter
    def theta12(self, value):
        value = _as_rad(value)
        self._check_angle("theta12", value)
        self._theta12 = value

    @property
    def theta13(self):
        """1-3 mixing angle"""
        return self._theta13

    @theta13.setter
    def theta13(self, value):
        value = _as_rad(value)
        self._check_angle("theta13", value)
        self._theta13 = value

    @property
    def theta23(self):
        """2-3 mixing angle"""
        return self._theta23

    @theta23.setter
    def theta23(self, value):
        value = _as_rad(value)
        self._check_angle("theta23", value)
        self._theta23 = value

    @property
    def deltacp(self):
        """CPV phase"""
        return self._deltacp

    @deltacp.setter
    def deltacp(self, value):
        value = _as_rad(value)
        if not np.isfinite(value):
            raise ValueError(f"deltacp must be finite, got {value}")
        self._deltacp = value

    # --- mass splittings --- #

    @property
    def dm12sq(self):
        """m_2^2 - m_1^2"""
        return self._dm12sq

    @dm12sq.setter
    def dm12sq(self, value):
        value = _as_ev2(value)
        if not np.isfinite(value):
            raise ValueError(f"dm12sq must be finite, got {value}")
        self._dm12sq = value

    @property
    def dm23sq(self):
        """m_3^2 - m_2^2"""
        return self._dm23sq

    @dm23sq.setter
    def dm23sq(self, value):
        value = _as_ev2(value)
        if not np.isfinite(value):
            raise ValueError(f"dm23sq must be finite, got {value}")
        self._dm23sq = value

    # --- derived matrices --- #

    @property
    def mix_matrix(self):
        """Neutrino mixing matrix"""
        mix = np.zeros((3, 3, 2), dtype=FTYPE)

        s12 = np.sin(self._theta12)
        s13 = np.sin(self._theta13)
        s23 = np.sin(self._theta23)
        c12 = np.cos(self._theta12)
        c13 = np.cos(self._theta13)
        c23 = np.cos(self._theta23)

        sd = np.sin(self._deltacp)
        cd = np.cos(self._deltacp)

        mix[0][0][0] = c12 * c13
        mix[0][0][1] = 0.0
        mix[0][1][0] = s12 * c13
        mix[0][1][1] = 0.0
        mix[0][2][0] = s13 * cd
        mix[0][2][1] = -s13 * sd
        mix[1][0][0] = -s12 * c23 - c12 * s23 * s13 * cd
        mix[1][0][1] = -c12 * s23 * s13 * sd
        mix[1][1][0] = c12 * c23 - s12 * s23 * s13 * cd
        mix[1][1][1] = -s12 * s23 * s13 * sd
        mix[1][2][0] = s23 * c13
        mix[1][2][1] = 0.0
        mix[2][0][0] = s12 * s23 - c12 * c23 * s13 * cd
        mix[2][0][1] = -c12 * c23 * s13 * sd
        mix[2][1][0] = -c12 * s23 - s12 * c23 * s13 * cd
        mix[2][1][1] = -s12 * c23 * s13 * sd
        mix[2][2][0] = c23 * c13
        mix[2][2][1] = 0.0

        return mix

    @property
    def mix_matrix_complex(self):
        """mixing matrix as complex 2-d array"""
        mix = self.mix_matrix
        return (mix[:, :, 0] + mix[:, :, 1] * 1.0j).astype(CTYPE)

    @property
    def dm_matrix(self):
        """Neutrino mass splitting matrix in vacuum"""
        mVac = np.zeros(3, dtype=np.float64)

        mVac[0] = 0.0
        mVac[1] = self._dm12sq
        mVac[2] = self._dm12sq + self._dm23sq

        # Break any degeneracies
        if self._dm12sq == 0.0:
            mVac[0] -= DEGENERACY_SHIFT
        if self._dm23sq == 0.0:
            mVac[2] += DEGENERACY_SHIFT

        dmVacVac = mVac[:, np.newaxis] - mVac[np.newaxis, :]
        return dmVacVac.astype(FTYPE)


def mix_factors(mix):
    """Products of mixing matrix elements used to contract a mass-basis
    matrix X into the flavour basis, U X U^dagger, without re-multiplying U
    for every layer.

    Parameters
    ----------
    mix : complex 2d-array of shape (3, 3)
        Mixing matrix, already conjugated for antineutrinos

    Returns
    -------
    factors : float 5d-array of shape (3, 3, 3, 3, 4)
        For output element (n, m) and mass-basis element (i, j):
        [..., 0] and [..., 1] multiply Re X_ij and Im X_ij into Re A_nm,
        [..., 2] and [..., 3] multiply Im X_ij and Re X_ij into Im A_nm.

    """
    mix = np.asarray(mix)
    re = mix.real.astype(np.float64)
    im = mix.imag.astype(np.float64)

    # index order: n, m, i, j  with U_ni and conj(U_mj)
    re_ni = re[:, None, :, None]
    im_ni = im[:, None, :, None]
    re_mj = re[None, :, None, :]
    im_mj = im[None, :, None, :]

    factors = np.empty((3, 3, 3, 3, 4), dtype=np.float64)
    factors[..., 0] = re_ni * re_mj + im_ni * im_mj
    factors[..., 1] = re_ni * im_mj - im_ni * re_mj
    factors[..., 2] = im_ni * im_mj + re_ni * re_mj
    factors[..., 3] = im_ni * re_mj - re_ni * im_mj
    return factors.astype(FTYPE)
