"""
Tests for oscgrid.utils.config_parser
"""


from __future__ import absolute_import, division

import configparser

import numpy as np
import pytest

from oscgrid import ureg
from oscgrid.core.propagator import NeutrinoType, Propagator
from oscgrid.utils.comparisons import ALLCLOSE_KW
from oscgrid.utils.config_parser import (
    OscgridConfigParser,
    parse_config,
    parse_list,
    parse_quantity,
    propagator_from_config,
)
from oscgrid.utils.log import logging, set_verbosity


SMALL_CFG = """
[oscillation]
theta12 = 33.44 * units.degree
theta13 = 8.57 * units.degree
theta23 = 49.2 * units.degree   ; maximal-ish
deltacp = 197 * units.degree
dm21 = 7.42e-5 * units.eV**2
dm31 = 2.517e-3 * units.eV**2

[earth]
model = osc/PREM_4layer.dat

[grid]
cosine_min = -1
cosine_max = 0.5
n_cosines = 4
energy_min = 1 * units.GeV
energy_max = 100 * units.GeV
n_energies = 3
energy_spacing = {spacing}

[production_height]
height = 20 * units.km
averaging_bins = {n_bins}
averaging_min = 10 * units.km
averaging_max = 30000 * units.m

[calculation]
consistency_check = {check}
"""


def _write_cfg(tmp_path, spacing="log", n_bins=0, check="none"):
    fname = tmp_path / "settings.cfg"
    fname.write_text(SMALL_CFG.format(spacing=spacing, n_bins=n_bins, check=check))
    return str(fname)


def test_parse_quantity():
    q = parse_quantity("2.5e-3 * units.eV**2")
    assert q.units == ureg.eV**2
    assert q.m == 2.5e-3

    assert parse_quantity("20 * ureg.km").m_as("m") == 20000
    assert parse_quantity(" -1 ").m_as("dimensionless") == -1
    assert np.isclose(parse_quantity("45 * units.degree").m_as("rad"), np.pi / 4)
    assert parse_quantity("3 * units.m / units.s").units == ureg.m / ureg.s

    for bad in ["", "abc", "1 * units.", "1 + 2"]:
        with pytest.raises(ValueError):
            parse_quantity(bad)
    logging.info("<< PASS : test_parse_quantity >>")


def test_parse_list():
    assert np.array_equal(parse_list("0.5, 0.4657,0.5,"), [0.5, 0.4657, 0.5])
    with pytest.raises(ValueError):
        parse_list(" , ")
    with pytest.raises(ValueError):
        parse_list("0.5, half")
    logging.info("<< PASS : test_parse_list >>")


def test_parser(tmp_path):
    parser = parse_config(_write_cfg(tmp_path))
    assert isinstance(parser, OscgridConfigParser)
    assert parse_config(parser) is parser

    # inline comments are stripped
    assert np.isclose(parser.get_quantity("oscillation", "theta23", units="degree"), 49.2)
    assert parser.getint("grid", "n_cosines") == 4
    assert parser.get_quantity("grid", "missing", fallback=1.0) == 1.0
    with pytest.raises(configparser.NoOptionError):
        parser.get_quantity("grid", "missing")

    # resource lookup for settings shipped with the package
    example = parse_config("settings/oscillogram_example.cfg")
    assert example.get("earth", "model") == "osc/PREM_4layer.dat"
    logging.info("<< PASS : test_parser >>")


def test_propagator_from_config(tmp_path):
    prop = propagator_from_config(_write_cfg(tmp_path))
    assert isinstance(prop, Propagator)
    assert prop.n_cosines == 4 and prop.n_energies == 3
    assert np.allclose(prop.cosines, [-1, -0.5, 0, 0.5], **ALLCLOSE_KW)
    assert np.allclose(prop.energies, [1, 10, 100], **ALLCLOSE_KW)
    assert not prop.use_averaging
    assert prop.consistency_check is None
    assert np.isclose(prop.osc_params.dm23sq, 2.517e-3 - 7.42e-5)
    assert np.isclose(prop.osc_params.theta12, np.deg2rad(33.44))

    prop.calculate_probabilities(NeutrinoType.NEUTRINO)
    assert np.allclose(prop.probabilities.sum(axis=-1), 1, rtol=0, atol=1e-9)

    linear = propagator_from_config(
        _write_cfg(tmp_path, spacing="linear", n_bins=5, check="warn")
    )
    assert np.allclose(linear.energies, [1, 50.5, 100], **ALLCLOSE_KW)
    assert linear.use_averaging
    assert linear.consistency_check == "warn"
    linear.calculate_probabilities(NeutrinoType.ANTINEUTRINO)
    assert np.allclose(linear.probabilities.sum(axis=-1), 1, rtol=0, atol=1e-6)

    with pytest.raises(ValueError):
        propagator_from_config(_write_cfg(tmp_path, spacing="quadratic"))
    with pytest.raises(ValueError):
        propagator_from_config(_write_cfg(tmp_path, check="always"))
    logging.info("<< PASS : test_propagator_from_config >>")


if __name__ == "__main__":
    import pathlib
    import tempfile

    set_verbosity(1)
    test_parse_quantity()
    test_parse_list()
    with tempfile.TemporaryDirectory() as tmpdir:
        test_parser(pathlib.Path(tmpdir))
        test_propagator_from_config(pathlib.Path(tmpdir))
