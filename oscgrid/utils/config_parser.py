"""
Parse oscgrid settings files and set up a `Propagator` from them.

Settings files are INI files. Dimensioned values are written as python-like
quantity expressions, e.g. `theta12 = 33.44 * units.degree`, and become pint
quantities. An example lives in `oscgrid/resources/settings/`.

Sections and options understood by `propagator_from_config`:

[oscillation]
    theta12, theta13, theta23, deltacp : angles
    dm21, dm31 : mass splittings (eV**2)

[earth]
    model : density profile file (resource path)
    yps : optional, comma separated electron fractions, outer shell first

[grid]
    cosine_min, cosine_max, n_cosines
    energy_min, energy_max, n_energies
    energy_spacing : "log" (default) or "linear"

[production_height]
    height : nominal production height
    averaging_bins : optional, number of uniform height bins (0 disables)
    averaging_min, averaging_max : bin range when averaging

[calculation]
    consistency_check : "none" (default), "warn" or "raise"
"""


from __future__ import absolute_import, division

import configparser
import re

import numpy as np

from oscgrid import FTYPE, ureg
from oscgrid.core.propagator import Propagator
from oscgrid.osc.osc_params import OscParams
from oscgrid.utils.log import logging
from oscgrid.utils.resources import find_resource


__all__ = [
    "QUANTITY_RE",
    "parse_quantity",
    "parse_list",
    "OscgridConfigParser",
    "parse_config",
    "propagator_from_config",
]


QUANTITY_RE = re.compile(
    r"^\s*(?P<value>[^*\s]+)\s*(\*\s*(ureg|units)\.(?P<units>.+?))?\s*$"
)
"""`<number>` or `<number> * units.<unit expression>`"""


def parse_quantity(string):
    """Parse `string` into a pint quantity (dimensionless without units).

    Examples
    --------
    >>> parse_quantity("2.5e-3 * units.eV**2")
    <Quantity(0.0025, 'electron_volt ** 2')>

    """
    match = QUANTITY_RE.match(string)
    if match is None:
        raise ValueError(f'Cannot interpret "{string}" as a quantity')
    try:
        value = float(match.group("value"))
    except ValueError:
        raise ValueError(f'Cannot interpret "{string}" as a quantity') from None
    units = match.group("units")
    if units is None:
        return value * ureg.dimensionless
    # allow the python-style unit expressions used in settings files
    units = units.replace("units.", "").replace("ureg.", "")
    return ureg.Quantity(value, ureg.parse_expression(units).units)


def parse_list(string, dtype=FTYPE):
    """Comma separated numbers as a 1d array"""
    items = [item.strip() for item in string.split(",") if item.strip()]
    if not items:
        raise ValueError(f'Empty list "{string}"')
    return np.array([float(item) for item in items], dtype=dtype)


class OscgridConfigParser(configparser.RawConfigParser):
    """Case-sensitive INI parser accepting `#` and `;` inline comments, which
    locates files through `find_resource`"""

    def __init__(self):
        super().__init__(inline_comment_prefixes=("#", ";"))

    def optionxform(self, optionstr):
        return optionstr

    def read(self, filenames, encoding=None):
        if isinstance(filenames, str):
            filenames = [filenames]
        paths = [find_resource(fname) for fname in filenames]
        for path in paths:
            logging.debug("Reading settings file %s", path)
        return super().read(paths, encoding=encoding)

    def get_quantity(self, section, option, units=None, fallback=None):
        """Option as pint quantity, or as plain float in `units` if given"""
        if not self.has_option(section, option):
            if fallback is None:
                raise configparser.NoOptionError(option, section)
            return fallback
        quantity = parse_quantity(self.get(section, option))
        if units is None:
            return quantity
        return quantity.m_as(units)


def parse_config(config):
    """Return an `OscgridConfigParser` for `config`, which may be a file
    (resource) path or an already filled parser"""
    if isinstance(config, configparser.RawConfigParser):
        return config
    parser = OscgridConfigParser()
    parser.read(config)
    return parser


def _grid_from_config(parser):
    n_cosines = parser.getint("grid", "n_cosines")
    n_energies = parser.getint("grid", "n_energies")
    cosines = np.linspace(
        parser.get_quantity("grid", "cosine_min", units="dimensionless"),
        parser.get_quantity("grid", "cosine_max", units="dimensionless"),
        n_cosines,
        dtype=FTYPE,
    )
    e_min = parser.get_quantity("grid", "energy_min", units="GeV")
    e_max = parser.get_quantity("grid", "energy_max", units="GeV")
    spacing = parser.get("grid", "energy_spacing", fallback="log").strip().lower()
    if spacing == "log":
        energies = np.logspace(np.log10(e_min), np.log10(e_max), n_energies, dtype=FTYPE)
    elif spacing == "linear":
        energies = np.linspace(e_min, e_max, n_energies, dtype=FTYPE)
    else:
        raise ValueError(f'energy_spacing must be "log" or "linear", got "{spacing}"')
    return cosines, energies


def propagator_from_config(config):
    """Build a ready-to-calculate `Propagator` from a settings file

    Parameters
    ----------
    config : str or OscgridConfigParser

    Returns
    -------
    Propagator

    """
    parser = parse_config(config)

    consistency_check = (
        parser.get("calculation", "consistency_check", fallback="none").strip().lower()
    )
    if consistency_check == "none":
        consistency_check = None

    cosines, energies = _grid_from_config(parser)
    prop = Propagator(
        n_cosines=len(cosines),
        n_energies=len(energies),
        consistency_check=consistency_check,
    )

    osc = "oscillation"
    prop.set_osc_params(
        OscParams.from_dm31(
            dm21=parser.get_quantity(osc, "dm21"),
            dm31=parser.get_quantity(osc, "dm31"),
            theta12=parser.get_quantity(osc, "theta12"),
            theta13=parser.get_quantity(osc, "theta13"),
            theta23=parser.get_quantity(osc, "theta23"),
            deltacp=parser.get_quantity(osc, "deltacp", fallback=0.0 * ureg.rad),
        )
    )

    prop.set_density_from_file(parser.get("earth", "model"))
    if parser.has_option("earth", "yps"):
        prop.set_chemical_composition(parse_list(parser.get("earth", "yps")))

    prop.set_cosine_list(cosines)
    prop.set_energy_list(energies)

    ph = "production_height"
    prop.set_production_height(parser.get_quantity(ph, "height"))
    n_bins = parser.getint(ph, "averaging_bins", fallback=0)
    if n_bins > 0:
        prop.set_number_of_production_height_bins(n_bins)
        edges = np.linspace(
            parser.get_quantity(ph, "averaging_min", units="km"),
            parser.get_quantity(ph, "averaging_max", units="km"),
            n_bins + 1,
            dtype=FTYPE,
        )
        probs = np.full(
            (2, 3, len(energies), len(cosines), n_bins), 1.0 / n_bins, dtype=FTYPE
        )
        prop.set_production_height_list(probs, edges)

    return prop
