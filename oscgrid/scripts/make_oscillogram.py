#! /usr/bin/env python
"""
Calculate an oscillogram (probabilities on a cosine x energy grid) from a
settings file, store it as .npz and optionally plot it.
"""


from __future__ import absolute_import, division, print_function

from argparse import ArgumentParser, ArgumentDefaultsHelpFormatter
import os

import numpy as np

from oscgrid.core.propagator import NeutrinoType, ProbType
from oscgrid.utils.config_parser import propagator_from_config
from oscgrid.utils.log import Levels, logging, set_verbosity


__all__ = ["make_oscillogram", "plot_oscillogram", "parse_args", "main"]


def make_oscillogram(config, nu_types=tuple(NeutrinoType)):
    """Calculate probabilities for each of `nu_types`

    Returns
    -------
    outputs : dict
        "cosines", "energies", and one (n_cosines, n_energies, 3, 3) array
        per neutrino type, keyed by its lower-case name

    """
    prop = propagator_from_config(config)
    outputs = dict(cosines=prop.cosines.copy(), energies=prop.energies.copy())
    for nu_type in nu_types:
        nu_type = NeutrinoType(nu_type)
        logging.info("Calculating %s probabilities", nu_type.name.lower())
        prop.calculate_probabilities(nu_type)
        outputs[nu_type.name.lower()] = prop.probabilities.copy()
    return outputs


def plot_oscillogram(outputs, nu_type, prob_type, fpath):
    """Plot one flavour transition of `outputs` to `fpath`"""
    import matplotlib as mpl
    # Headless mode; must set prior to pyplot import
    mpl.use("Agg")
    import matplotlib.pyplot as plt

    nu_type = NeutrinoType(nu_type)
    prob_type = ProbType(prob_type)
    probs = outputs[nu_type.name.lower()][:, :, prob_type.flav_in, prob_type.flav_out]

    fig, ax = plt.subplots(figsize=(7, 5))
    mesh = ax.pcolormesh(
        outputs["energies"],
        outputs["cosines"],
        probs,
        vmin=0,
        vmax=1,
        shading="auto",
    )
    ax.set_xscale("log")
    ax.set_xlabel(r"$E_\nu$ (GeV)")
    ax.set_ylabel(r"$\cos\theta_z$")
    ax.set_title(f"{nu_type.name.lower()} {prob_type.name}")
    fig.colorbar(mesh, ax=ax, label="probability")
    fig.tight_layout()
    fig.savefig(fpath)
    plt.close(fig)
    logging.info("Plot written to %s", fpath)


def parse_args(args=None):
    """Get command line arguments"""
    parser = ArgumentParser(
        description=__doc__, formatter_class=ArgumentDefaultsHelpFormatter
    )
    parser.add_argument(
        "-c",
        "--config",
        type=str,
        default="settings/oscillogram_example.cfg",
        metavar="CONFIGFILE",
        help="Settings file (path or package resource)",
    )
    parser.add_argument(
        "--nu-type",
        choices=["neutrino", "antineutrino", "both"],
        default="both",
        help="Which neutrino types to calculate",
    )
    parser.add_argument(
        "-o",
        "--outfile",
        type=str,
        default="oscillogram.npz",
        help="Output .npz file",
    )
    parser.add_argument(
        "--plot",
        type=str,
        default=None,
        metavar="PROB_TYPE",
        choices=[t.name for t in ProbType],
        help="Also plot this flavour transition (e.g. M_M) next to the output",
    )
    parser.add_argument("-v", action="count", default=None, help="Set verbosity level")
    return parser.parse_args(args)


def main(args=None):
    """Main; call as script"""
    args = parse_args(args)
    # -vvvv and beyond stay at the most verbose level
    set_verbosity(None if args.v is None else min(args.v, Levels.TRACE))

    if args.nu_type == "both":
        nu_types = tuple(NeutrinoType)
    else:
        nu_types = (NeutrinoType[args.nu_type.upper()],)

    outputs = make_oscillogram(args.config, nu_types=nu_types)

    outdir = os.path.dirname(os.path.abspath(args.outfile))
    if not os.path.isdir(outdir):
        os.makedirs(outdir)
    np.savez(args.outfile, **outputs)
    logging.info("Oscillogram written to %s", args.outfile)

    if args.plot is not None:
        stem = os.path.splitext(args.outfile)[0]
        for nu_type in nu_types:
            plot_oscillogram(
                outputs,
                nu_type,
                ProbType[args.plot],
                f"{stem}_{nu_type.name.lower()}_{args.plot}.png",
            )

    return outputs


if __name__ == "__main__":
    main()
