#!/usr/bin/env python3
"""
Fit alpha, theta and kappa of the SP layer to RTI data.

The input file holds a parameter header, a blank line, a second blank line,
one column-heading line and then `time  concentration` columns.  Every
simplex vertex is a full forward run of the three-layer model, so fits on
full-size grids take a while.

Usage:
  python scripts/run_fit_layer.py [options] slice3.txt
  python scripts/run_fit_layer.py -v -g --nr 100 --nz 200 --pathfile path.txt slice3
"""
import argparse
import os
import sys
import time

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt

from rti_layer.config import (ExperimentSetup, FIT_DEFAULTS, InvalidConfiguration,
                              build_config, read_yaml_config)
from rti_layer.data import (geometry_lines, io_filenames, path_header, path_row,
                            read_rti_data, write_fit_report, write_simplex_path)
from rti_layer.diagnostics import residual_summary
from rti_layer.fit import default_layer_parameters, fit_layer
from rti_layer.model import LayerParams
from rti_layer.plots import probe_curves, simplex_path

# Clearance defaults differ from the forward program
FIT_LAYER_BASE = ExperimentSetup(
    sr=LayerParams(alpha=0.218, theta=0.447, kappa=0.007),
    sp=LayerParams(alpha=0.2, theta=0.4, kappa=0.01),
    so=LayerParams(alpha=0.218, theta=0.447, kappa=0.007),
)

PARAMETER_OPTIONS = {
    "nr": int, "nz": int, "nt": int, "nt_scale": float, "ez1": float, "ez2": float,
    "alpha_so": float, "alpha_sp": float, "alpha_sr": float,
    "theta_so": float, "theta_sp": float, "theta_sr": float,
    "kappa_so": float, "kappa_sp": float, "kappa_sr": float,
    "kappa_outside": float, "tmax": float,
}
FIT_OPTIONS = {
    "alpha_step": float, "theta_step": float, "kappa_step": float,
    "minalpha": float, "maxalpha": float, "mintheta": float, "maxtheta": float,
    "minkappa": float, "maxkappa": float, "fit_tol": float, "itermax": int,
}


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description='Fit alpha, theta and kappa of SP to RTI data from a layered environment')
    parser.add_argument('input', help='Parameter/data file (a bare basename gets .txt appended)')
    parser.add_argument('-v', '--verbose', action='store_true', help='Be verbose')
    parser.add_argument('-g', '--global-kappa', '--global_kappa', action='store_true',
                        dest='global_kappa', help='Use the same kappa in all layers (= kappa_sp)')
    for name, kind in {**PARAMETER_OPTIONS, **FIT_OPTIONS}.items():
        flags = ['--' + name.replace('_', '-')]
        if '_' in name:
            flags.append('--' + name)
        parser.add_argument(*flags, type=kind, dest=name, default=None,
                            help=f'Override {name}')
    parser.add_argument('--config', default=None,
                        help='YAML file with `parameters:` and `fit:` sections')
    parser.add_argument('--outfile', default=None, help='Output file (default: <input>.dat)')
    parser.add_argument('--pathfile', default=None, help='Write the simplex path to this file')
    parser.add_argument('--plots', action='store_true', help='Save fit plots next to the output')
    return parser.parse_args(argv)


def collect_parameters(args, file_params):
    params = dict(file_params)
    fit = dict(FIT_DEFAULTS)
    if args.config:
        yaml_params, yaml_fit = read_yaml_config(args.config)
        params.update(yaml_params)
        fit.update(yaml_fit)
    for name in PARAMETER_OPTIONS:
        if getattr(args, name) is not None:
            params[name] = getattr(args, name)
    for name in FIT_OPTIONS:
        if getattr(args, name) is not None:
            fit[name] = getattr(args, name)
    if args.global_kappa:
        params["global_kappa"] = True
    return params, fit


def main(argv=None):
    args = parse_args(argv)
    infile, outfile = io_filenames(args.input, ".txt", ".dat")
    if args.outfile:
        outfile = args.outfile
    if infile == outfile or (args.pathfile and args.pathfile in (infile, outfile)):
        print("Error: the input, output and simplex path filenames must differ", file=sys.stderr)
        return 1

    started = time.time()
    header, data = read_rti_data(infile)
    if args.verbose:
        print(f"[INFO] Read {len(data)} data points from {infile}")
    params, fit_opts = collect_parameters(args, header.params)
    try:
        setup = ExperimentSetup.from_parameters(params, base=FIT_LAYER_BASE)
        config = build_config(setup, header.comments)
    except InvalidConfiguration as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.verbose:
        print(f"[INFO] Output file: {outfile}")
        for line in geometry_lines(config, "run_fit_layer", fit=fit_opts):
            print(line.replace("\n# ", "\n").rstrip("\n")[2:])

    parameters = default_layer_parameters(
        config.sp,
        alpha_step=fit_opts["alpha_step"], theta_step=fit_opts["theta_step"],
        kappa_step=fit_opts["kappa_step"],
        alpha_bounds=(fit_opts["minalpha"], fit_opts["maxalpha"]),
        theta_bounds=(fit_opts["mintheta"], fit_opts["maxtheta"]),
        kappa_bounds=(fit_opts["minkappa"], fit_opts["maxkappa"]))
    names = [p.name for p in parameters]
    start = [p.start for p in parameters]

    if args.verbose:
        print("\nSimplex fitting -- vertex changes:")
        print(path_header(names))
        print("0\t" + "\t".join(f"{v:f}" for v in start))

    def progress(step):
        if args.verbose:
            print(path_row(step))

    fit = fit_layer(config, data, "sp", parameters,
                    tol=fit_opts["fit_tol"], max_iter=int(fit_opts["itermax"]),
                    callback=progress)
    if not fit.converged:
        print(f"Warning: failed to converge, # iterations = {fit.iterations}")
    if args.verbose:
        print(fit)

    if args.pathfile:
        write_simplex_path(args.pathfile, names, start, fit.path,
                           "Simplex fitting -- vertex changes:", converged=fit.converged)
        print(f"[WRITE] {args.pathfile}")

    elapsed = time.time() - started
    write_fit_report(outfile, config, fit, fit_opts,
                     command=" ".join(sys.argv), comments=header.comments,
                     started=started, elapsed=elapsed)
    print(f"[WRITE] {outfile}")

    if args.plots:
        summary = residual_summary(fit.curve, data)
        base = os.path.splitext(outfile)[0]
        probe_curves([fit.curve, data],
                     f"SP fit: rmse = {summary['rmse']:.3g}, "
                     f"peak ratio = {summary['peak_ratio']:.3f}")
        plt.savefig(base + "_fit.png", dpi=150); plt.close()
        simplex_path(fit.path, names, "Simplex path")
        plt.savefig(base + "_path.png", dpi=150); plt.close()
        print(f"[WRITE] {base}_fit.png, {base}_path.png")
    return 0


if __name__ == "__main__":
    sys.exit(main())
