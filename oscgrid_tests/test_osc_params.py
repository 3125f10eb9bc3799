"""
Tests for oscgrid.osc.osc_params
"""


from __future__ import absolute_import, division

import numpy as np
import pytest

from oscgrid import ureg
from oscgrid.osc.osc_params import DEGENERACY_SHIFT, OscParams, mix_factors
from oscgrid.utils.comparisons import ALLCLOSE_KW
from oscgrid.utils.log import logging, set_verbosity


def _nufit_params(deltacp=197.0):
    return OscParams.from_dm31(
        dm21=7.42e-5,
        dm31=2.517e-3,
        theta12=np.deg2rad(33.44),
        theta13=np.deg2rad(8.57),
        theta23=np.deg2rad(49.2),
        deltacp=np.deg2rad(deltacp),
    )


def test_mix_matrix_unitary():
    """U U^dagger = 1 for several CP phases"""
    for deltacp in (0.0, 90.0, 197.0, -45.0):
        mix = _nufit_params(deltacp).mix_matrix_complex
        assert np.allclose(mix @ mix.conj().T, np.eye(3), rtol=0, atol=1e-12)
    logging.info("<< PASS : test_mix_matrix_unitary >>")


def test_mix_matrix_layout():
    """complex and (re, im) layouts agree; real first row without CP phase"""
    params = _nufit_params(0.0)
    mix = params.mix_matrix
    mix_c = params.mix_matrix_complex
    assert mix.shape == (3, 3, 2)
    assert np.allclose(mix[..., 0], mix_c.real, **ALLCLOSE_KW)
    assert np.allclose(mix[..., 1], mix_c.imag, **ALLCLOSE_KW)
    assert np.all(mix[0, :, 1] == 0)
    assert np.isclose(mix_c[0, 2].real, np.sin(params.theta13))
    logging.info("<< PASS : test_mix_matrix_layout >>")


def test_dm_matrix():
    """antisymmetric with zero diagonal, built from m^2 = [0, dm12, dm12+dm23]"""
    params = OscParams(7.5e-5, 2.4e-3, 0.6, 0.15, 0.8)
    dm = params.dm_matrix
    assert np.allclose(dm, -dm.T, **ALLCLOSE_KW)
    assert np.all(np.diag(dm) == 0)
    assert np.isclose(dm[1, 0], 7.5e-5)
    assert np.isclose(dm[2, 1], 2.4e-3)
    assert np.isclose(dm[2, 0], 7.5e-5 + 2.4e-3)
    logging.info("<< PASS : test_dm_matrix >>")


def test_dm_matrix_degeneracies():
    """exactly degenerate splittings are shifted apart"""
    params = OscParams(0.0, 0.0, 0.6, 0.15, 0.8)
    dm = params.dm_matrix
    assert np.isclose(dm[1, 0], DEGENERACY_SHIFT)
    assert np.isclose(dm[2, 1], DEGENERACY_SHIFT)
    assert np.isclose(dm[2, 0], 2 * DEGENERACY_SHIFT)
    logging.info("<< PASS : test_dm_matrix_degeneracies >>")


def test_from_dm31_and_units():
    """dm23 = dm31 - dm21; pint quantities are converted"""
    params = OscParams.from_dm31(
        dm21=7.4e-5 * ureg.eV ** 2,
        dm31=2.5e-3 * ureg.eV ** 2,
        theta12=33.4 * ureg.degree,
        theta13=8.6 * ureg.degree,
        theta23=49.0 * ureg.degree,
        deltacp=180 * ureg.degree,
    )
    assert np.isclose(params.dm23sq, 2.5e-3 - 7.4e-5)
    assert np.isclose(params.theta12, np.deg2rad(33.4))
    assert np.isclose(params.deltacp, np.pi)
    assert "OscParams(" in repr(params)
    logging.info("<< PASS : test_from_dm31_and_units >>")


def test_invalid_values():
    with pytest.raises(ValueError):
        OscParams(np.nan, 2.4e-3, 0.6, 0.15, 0.8)
    with pytest.raises(ValueError):
        OscParams(7.5e-5, 2.4e-3, 0.6, np.inf, 0.8)
    with pytest.raises(ValueError):
        OscParams(7.5e-5, 2.4e-3, 0.6, 0.15, 0.8, deltacp=np.nan)
    logging.info("<< PASS : test_invalid_values >>")


def test_mix_factors_contraction():
    """contracting through the factor tensor reproduces U X U^dagger"""
    rand = np.random.RandomState(0)
    mix = _nufit_params().mix_matrix_complex
    factors = mix_factors(mix)
    assert factors.shape == (3, 3, 3, 3, 4)

    x = rand.normal(size=(3, 3)) + 1j * rand.normal(size=(3, 3))
    re = np.einsum("nmij,ij->nm", factors[..., 0], x.real) + np.einsum(
        "nmij,ij->nm", factors[..., 1], x.imag
    )
    im = np.einsum("nmij,ij->nm", factors[..., 2], x.imag) + np.einsum(
        "nmij,ij->nm", factors[..., 3], x.real
    )
    expected = mix @ x @ mix.conj().T
    assert np.allclose(re + 1j * im, expected, rtol=1e-12, atol=1e-12)
    logging.info("<< PASS : test_mix_factors_contraction >>")


if __name__ == "__main__":
    set_verbosity(1)
    test_mix_matrix_unitary()
    test_mix_matrix_layout()
    test_dm_matrix()
    test_dm_matrix_degeneracies()
    test_from_dm31_and_units()
    test_invalid_values()
    test_mix_factors_contraction()
