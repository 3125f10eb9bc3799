"""
Physics tests of the grid driver, oscgrid.core.grid.calculate
"""


from __future__ import absolute_import, division

import numpy as np
import pytest

from oscgrid import FTYPE
from oscgrid.core.errors import CapacityError
from oscgrid.core.grid import calculate, make_bundle, transition_consistency
from oscgrid.osc.layers import DensityProfile
from oscgrid.osc.osc_params import OscParams
from oscgrid.osc.prob3numba.numba_osc_kernels import HBAR_C_FACTOR, TWO_ROOT_TWO_GF
from oscgrid.utils.comparisons import ALLCLOSE_KW
from oscgrid.utils.log import logging, set_verbosity


PARAMS = OscParams.from_dm31(
    dm21=7.4e-5,
    dm31=2.5e-3,
    theta12=np.deg2rad(33.4),
    theta13=np.deg2rad(8.6),
    theta23=np.deg2rad(49.0),
    deltacp=np.deg2rad(230.0),
)

PROD_HEIGHT = 20.0

COSINES = np.array([-1.0, -0.95, -0.8, -0.5, -0.2, 0.0, 0.3, 1.0], dtype=FTYPE)
ENERGIES = np.logspace(0, 2, 9).astype(FTYPE)


def _prem():
    return DensityProfile.from_file("osc/PREM_4layer.dat")


def _run(params, nubar, profile, cosines=COSINES, energies=ENERGIES, **kwargs):
    return calculate(
        make_bundle(params, nubar),
        cosines,
        energies,
        profile.radii,
        profile.rhos,
        profile.max_layers(cosines),
        kwargs.pop("prod_height", PROD_HEIGHT),
        poly_coeffs=profile.poly_coeffs if profile.use_poly else None,
        yps=profile.yps,
        **kwargs
    )


def _path_length(cosine, r_earth, height):
    return np.sqrt((r_earth + height) ** 2 - r_earth ** 2 * (1 - cosine ** 2)) - r_earth * cosine


def _vacuum_probs(params, nubar, baseline, energy):
    """P[in, out] = |sum_i U*_in,i U_out,i exp(-i dm_i0 L / 2E)|^2"""
    mix = params.mix_matrix_complex.astype(np.complex128)
    if nubar < 0:
        mix = mix.conj()
    phases = np.exp(-1j * HBAR_C_FACTOR * params.dm_matrix[:, 0] * baseline / energy)
    amp = np.einsum("ai,bi,i->ab", mix.conj(), mix, phases)
    return np.abs(amp) ** 2


def _layer_amplitude(bundle, energy, rho, baseline):
    """exp(-i H L) for one layer of constant electron density, [out, in]"""
    mix = bundle.mix.astype(np.complex128)
    hamiltonian = mix @ np.diag(bundle.dm[:, 0].astype(np.float64)) @ mix.conj().T
    hamiltonian[0, 0] += bundle.nubar * TWO_ROOT_TWO_GF * energy * rho
    eigvals, eigvecs = np.linalg.eigh(hamiltonian)
    phases = np.exp(-1j * HBAR_C_FACTOR * eigvals * baseline / energy)
    return eigvecs @ np.diag(phases) @ eigvecs.conj().T


def _uniform_heights(n_bins, n_cosines, n_energies):
    probs = np.full((n_cosines, n_energies, 3, n_bins), 1.0 / n_bins, dtype=FTYPE)
    edges = np.linspace(10.0, 30.0, n_bins + 1).astype(FTYPE)
    return probs, edges


def test_unitarity():
    """every row of P sums to one, with and without height averaging"""
    profile = _prem()
    probs, edges = _uniform_heights(5, len(COSINES), len(ENERGIES))
    for nubar in (1, -1):
        for averaging in (False, True):
            kwargs = {}
            if averaging:
                kwargs = dict(use_averaging=True, height_probs=probs, height_edges=edges)
            result = _run(PARAMS, nubar, profile, **kwargs)
            assert result.shape == (len(COSINES), len(ENERGIES), 3, 3)
            assert np.all(result >= -1e-9) and np.all(result <= 1 + 1e-9)
            assert np.allclose(result.sum(axis=-1), 1, rtol=0, atol=1e-6)
            # unitarity of the amplitude also fixes the column sums
            assert np.allclose(result.sum(axis=-2), 1, rtol=0, atol=1e-6)
    logging.info("<< PASS : test_unitarity >>")


def test_vacuum_limit():
    """zero densities reproduce the vacuum formula along the full path"""
    prem = _prem()
    vacuum = DensityProfile(prem.radii, rhos=np.zeros(prem.n_radii), yps=prem.yps)
    for nubar in (1, -1):
        result = _run(PARAMS, nubar, vacuum)
        for i, cosine in enumerate(COSINES):
            baseline = _path_length(cosine, vacuum.r_earth, PROD_HEIGHT)
            for j, energy in enumerate(ENERGIES):
                expected = _vacuum_probs(PARAMS, nubar, baseline, energy)
                assert np.allclose(result[i, j], expected, rtol=0, atol=1e-8), (
                    cosine,
                    energy,
                )
    logging.info("<< PASS : test_vacuum_limit >>")


def test_two_flavour_limit():
    """theta12 = theta13 = 0 decouples nu_e; P(mu -> mu) is the two-flavour
    vacuum formula at dm32 even in constant matter"""
    params = OscParams(7.4e-5, 2.4e-3, 0.0, 0.0, np.deg2rad(45.0), 0.0)
    profile = DensityProfile([0.0, 6371.0], rhos=[4.0, 4.0])
    cosines = np.array([-1.0, -0.6, -0.1], dtype=FTYPE)
    energies = np.array([1.0, 5.0, 20.0], dtype=FTYPE)
    result = _run(params, 1, profile, cosines=cosines, energies=energies)

    for i, cosine in enumerate(cosines):
        baseline = _path_length(cosine, profile.r_earth, PROD_HEIGHT)
        phase = 0.5 * HBAR_C_FACTOR * params.dm23sq * baseline / energies
        expected = 1 - np.sin(2 * params.theta23) ** 2 * np.sin(phase) ** 2
        assert np.allclose(result[i, :, 1, 1], expected, rtol=0, atol=1e-7)
        # nu_e stays nu_e
        assert np.allclose(result[i, :, 0, 0], 1, rtol=0, atol=1e-7)
    logging.info("<< PASS : test_two_flavour_limit >>")


def test_cp_matter_symmetry():
    """antineutrinos with (delta, rho) equal neutrinos with (-delta, -rho)"""
    profile = _prem()
    flipped = DensityProfile(profile.radii, rhos=-profile.rhos, yps=profile.yps)
    params_minus = OscParams(
        PARAMS.dm12sq,
        PARAMS.dm23sq,
        PARAMS.theta12,
        PARAMS.theta13,
        PARAMS.theta23,
        -PARAMS.deltacp,
    )
    nubar_result = _run(PARAMS, -1, profile)
    nu_result = _run(params_minus, 1, flipped)
    assert np.allclose(nubar_result, nu_result, **ALLCLOSE_KW)

    # and matter does make a difference
    assert not np.allclose(nubar_result, _run(PARAMS, 1, profile), atol=1e-3)
    logging.info("<< PASS : test_cp_matter_symmetry >>")


def test_idempotence():
    profile = _prem()
    first = _run(PARAMS, 1, profile)
    second = _run(PARAMS, 1, profile)
    assert np.array_equal(first, second)

    out = np.zeros_like(first)
    third = _run(PARAMS, 1, profile, out=out)
    assert third is out
    assert np.array_equal(first, out)
    logging.info("<< PASS : test_idempotence >>")


def test_boundary_cosines():
    """horizontal and straight-through rays stay within the layer capacity"""
    profile = _prem()
    cosines = np.array([0.0, -1.0], dtype=FTYPE)
    max_layers = profile.max_layers(cosines)
    assert list(max_layers) == [0, profile.n_radii - 1]
    result = _run(PARAMS, 1, profile, cosines=cosines)
    assert np.all(np.isfinite(result))
    assert np.allclose(result.sum(axis=-1), 1, rtol=0, atol=1e-6)
    logging.info("<< PASS : test_boundary_cosines >>")


def test_single_bin_averaging():
    """a single zero-width bin at the nominal height changes nothing"""
    profile = _prem()
    plain = _run(PARAMS, 1, profile)
    probs = np.ones((len(COSINES), len(ENERGIES), 3, 1), dtype=FTYPE)
    edges = np.array([PROD_HEIGHT, PROD_HEIGHT], dtype=FTYPE)
    averaged = _run(
        PARAMS, 1, profile, use_averaging=True, height_probs=probs, height_edges=edges
    )
    assert np.allclose(averaged, plain, rtol=0, atol=1e-9)
    logging.info("<< PASS : test_single_bin_averaging >>")


def test_averaging_damps_oscillations():
    """averaging down-going neutrinos over a wide height range equals the
    brute-force mean over atmospheric distances, bin by bin"""
    profile = _prem()
    cosine, energy, n_bins = 0.1, 0.3, 20
    cosines = np.array([cosine], dtype=FTYPE)
    energies = np.array([energy], dtype=FTYPE)
    probs = np.full((1, 1, 3, n_bins), 1.0 / n_bins, dtype=FTYPE)
    edges = np.linspace(0.0, 400.0, n_bins + 1).astype(FTYPE)
    plain = _run(PARAMS, 1, profile, cosines=cosines, energies=energies, prod_height=200.0)
    averaged = _run(
        PARAMS,
        1,
        profile,
        cosines=cosines,
        energies=energies,
        prod_height=200.0,
        use_averaging=True,
        height_probs=probs,
        height_edges=edges,
    )

    # within each height bin, the distance is taken as uniform between the
    # distances of the bin edges
    n_samples = 1000
    brute = np.zeros((3, 3))
    for low, high in zip(edges[:-1], edges[1:]):
        d_low = _path_length(cosine, profile.r_earth, low)
        d_high = _path_length(cosine, profile.r_earth, high)
        samples = d_low + (np.arange(n_samples) + 0.5) / n_samples * (d_high - d_low)
        brute += np.mean(
            [_vacuum_probs(PARAMS, 1, d, energy) for d in samples], axis=0
        ) / n_bins

    assert np.allclose(averaged[0, 0], brute, rtol=0, atol=1e-5)
    assert np.max(np.abs(plain[0, 0] - brute)) > 1e-2
    logging.info("<< PASS : test_averaging_damps_oscillations >>")


def test_layer_composition_in_matter():
    """rays through mantle and core match the ordered product of single-layer
    evolution operators along the full, mirrored path"""
    profile = _prem()
    cosines = np.array([-1.0, -0.9, -0.5, -0.2], dtype=FTYPE)
    energies = np.array([2.0, 5.0, 12.0], dtype=FTYPE)
    for nubar in (1, -1):
        bundle = make_bundle(PARAMS, nubar)
        result = _run(PARAMS, nubar, profile, cosines=cosines, energies=energies)
        for i, cosine in enumerate(cosines):
            distances, densities = profile.ray_path(cosine, PROD_HEIGHT)
            assert profile.max_layers([cosine])[0] >= 1
            for j, energy in enumerate(energies):
                # the production point comes first, later layers multiply from
                # the left
                amp = np.eye(3, dtype=np.complex128)
                for distance, rho in zip(distances, densities):
                    amp = _layer_amplitude(bundle, energy, rho, distance) @ amp
                expected = (np.abs(amp) ** 2).T
                assert np.allclose(result[i, j], expected, rtol=0, atol=1e-7)
    logging.info("<< PASS : test_layer_composition_in_matter >>")


def test_concrete_scenario():
    """2 x 2 grid in vacuum: P(e -> e) follows dm31 L / E"""
    prem = _prem()
    vacuum = DensityProfile(prem.radii, rhos=np.zeros(prem.n_radii))
    cosines = np.array([-1.0, 0.5], dtype=FTYPE)
    energies = np.array([1.0, 10.0], dtype=FTYPE)
    result = _run(PARAMS, 1, vacuum, cosines=cosines, energies=energies)
    assert result.shape == (2, 2, 3, 3)
    assert np.allclose(result.sum(axis=-1), 1, rtol=0, atol=1e-6)

    for i, cosine in enumerate(cosines):
        baseline = _path_length(cosine, vacuum.r_earth, PROD_HEIGHT)
        for j, energy in enumerate(energies):
            assert np.allclose(
                result[i, j], _vacuum_probs(PARAMS, 1, baseline, energy), rtol=0, atol=1e-8
            )

    # the short down-going baseline at 10 GeV has hardly oscillated
    assert result[1, 1, 0, 0] > 0.99
    # the long baseline at 1 GeV has
    assert result[0, 0, 0, 0] < 0.99
    logging.info("<< PASS : test_concrete_scenario >>")


def test_polynomial_profile():
    """polynomial densities are used and keep probabilities unitary"""
    poly = DensityProfile.from_file("osc/PREM_4layer_poly.dat")
    const = _prem()
    p_poly = _run(PARAMS, 1, poly)
    p_const = _run(PARAMS, 1, const)
    assert np.allclose(p_poly.sum(axis=-1), 1, rtol=0, atol=1e-6)
    assert not np.allclose(p_poly, p_const, rtol=0, atol=1e-6)
    # down-going rays never see the profile
    down = COSINES >= 0
    assert np.allclose(p_poly[down], p_const[down], rtol=0, atol=1e-12)
    logging.info("<< PASS : test_polynomial_profile >>")


def test_consistency_check():
    """direct and expanded layer matrices agree along every ray"""
    profile = _prem()
    bundle = make_bundle(PARAMS, 1)
    deviation = transition_consistency(
        bundle,
        COSINES,
        ENERGIES,
        profile.radii,
        profile.rhos,
        profile.max_layers(COSINES),
        PROD_HEIGHT,
        yps=profile.yps,
    )
    assert 0 <= deviation < 1e-9
    # passes silently
    _run(PARAMS, 1, profile, consistency_check="raise")
    with pytest.raises(ValueError):
        _run(PARAMS, 1, profile, consistency_check="abort")
    logging.info("<< PASS : test_consistency_check >>")


def test_input_errors():
    profile = _prem()
    bundle = make_bundle(PARAMS, 1)
    max_layers = profile.max_layers(COSINES)
    with pytest.raises(ValueError):
        make_bundle(PARAMS, 0)
    with pytest.raises(ValueError):
        calculate(bundle, COSINES, ENERGIES, profile.radii, profile.rhos, max_layers[:-1], 20.0)
    with pytest.raises(ValueError):
        calculate(bundle, COSINES, ENERGIES, profile.radii, profile.rhos[:-1], max_layers, 20.0)
    with pytest.raises(ValueError):
        calculate(
            bundle, COSINES, ENERGIES, profile.radii, profile.rhos, max_layers, 20.0,
            use_averaging=True,
        )
    with pytest.raises(CapacityError):
        calculate(
            bundle, COSINES, ENERGIES, profile.radii, profile.rhos, max_layers, 20.0,
            use_averaging=True,
            height_probs=np.ones((len(COSINES), len(ENERGIES), 3, 1000)),
            height_edges=np.linspace(0, 100, 1001),
        )
    logging.info("<< PASS : test_input_errors >>")


if __name__ == "__main__":
    set_verbosity(1)
    test_unitarity()
    test_vacuum_limit()
    test_two_flavour_limit()
    test_cp_matter_symmetry()
    test_idempotence()
    test_boundary_cosines()
    test_single_bin_averaging()
    test_averaging_damps_oscillations()
    test_layer_composition_in_matter()
    test_concrete_scenario()
    test_polynomial_profile()
    test_consistency_check()
    test_input_errors()
