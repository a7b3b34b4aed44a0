#!/usr/bin/env python3
"""
Forward run of the three-layer diffusion model.

Reads a parameter file (`parameter = value [trailing text]` lines), solves
for the probe concentration curve, fits the homogeneous model to it
(apparent alpha/theta, characteristic curve) and writes `<input>.dat`.

Usage:
  python scripts/run_3layer.py [options] run.par
  python scripts/run_3layer.py --config configs/golden.yaml --images out/img run

Values given on the command line override the YAML config, which overrides
the parameter file.
"""
import argparse
import os
import sys
import time

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt

from rti_layer.config import (ExperimentSetup, FIT_DEFAULTS, InvalidConfiguration,
                              build_config, parse_source_list, read_yaml_config)
from rti_layer.data import (ParameterFile, SnapshotWriter, geometry_lines, io_filenames, path_header,
                            path_row, read_parameter_file, write_forward_report,
                            write_simplex_path)
from rti_layer.diagnostics import residual_summary
from rti_layer.fit import fit_characteristic_curve
from rti_layer.plots import fit_residuals, probe_curves
from rti_layer.solver import ForwardSolver

PARAMETER_OPTIONS = {
    "nr": int, "nz": int, "nt": int, "nt_scale": float,
    "probe_z": float, "probe_r": float, "ez1": float, "ez2": float,
    "alpha_so": float, "alpha_sp": float, "alpha_sr": float,
    "theta_so": float, "theta_sp": float, "theta_sr": float,
    "kappa_so": float, "kappa_sp": float, "kappa_sr": float,
    "kappa_outside": float, "tmax": float,
}
FIT_OPTIONS = {
    "alpha_start": float, "theta_start": float, "alpha_step": float,
    "theta_step": float, "fit_tol": float, "itermax": int,
}


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description='Concentration of a substance diffusing from a point source '
                    'through 3 adjacent homogeneous layers')
    parser.add_argument('input', help='Parameter file (a bare basename gets .par appended)')
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
    parser.add_argument('--images', default=None,
                        help='Base name for concentration images (<base>.<ms>ms.raw)')
    parser.add_argument('--image-spacing', '--image_spacing', type=float, default=1.0,
                        dest='image_spacing', help='Seconds between images (default: 1)')
    parser.add_argument('--additional-sources', '--additional_sources', default=None,
                        dest='additional_sources',
                        help='"n z1 r1 crnt1 ..." extra sources in microns and nA')
    parser.add_argument('--plots', action='store_true', help='Save probe curve plots next to the output')
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
    if args.additional_sources:
        params["additional_sources"] = parse_source_list(args.additional_sources)
    return params, fit


def main(argv=None):
    args = parse_args(argv)
    infile, outfile = io_filenames(args.input, ".par", ".dat")
    if args.outfile:
        outfile = args.outfile
    if infile == outfile or (args.pathfile and args.pathfile in (infile, outfile)):
        print("Error: the input, output and simplex path filenames must differ", file=sys.stderr)
        return 1

    started = time.time()
    if args.config and not os.path.exists(infile):
        pfile = ParameterFile(infile)
    else:
        pfile = read_parameter_file(infile)
    params, fit_opts = collect_parameters(args, pfile.params)
    try:
        config = build_config(ExperimentSetup.from_parameters(params), pfile.comments)
    except InvalidConfiguration as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.verbose:
        print(f"[INFO] Input file: {infile}")
        print(f"[INFO] Output file: {outfile}")
        for line in geometry_lines(config, "run_3layer"):
            print(line.replace("\n# ", "\n").rstrip("\n")[2:])

    sink = SnapshotWriter(args.images) if args.images else None
    solver = ForwardSolver(snapshot_spacing=args.image_spacing if sink else None, sink=sink)
    if args.verbose:
        print(f"[INFO] Solving {config.nt} time steps on a {config.nz} x {config.nr} grid")
    probe = solver.run(config)
    if sink is not None:
        print(f"[WRITE] {len(sink.paths)} images, info in {sink.info_path}")

    names = ["alpha", "theta"]
    start = [fit_opts["alpha_start"], fit_opts["theta_start"]]
    if args.verbose:
        print("\nFitting for apparent parameters/characteristic curve:")
        print(path_header(names))
        print("0\t" + "\t".join(f"{v:f}" for v in start))

    def progress(step):
        if args.verbose:
            print(path_row(step))

    fit = fit_characteristic_curve(
        config, probe,
        alpha_start=fit_opts["alpha_start"], theta_start=fit_opts["theta_start"],
        alpha_step=fit_opts["alpha_step"], theta_step=fit_opts["theta_step"],
        tol=fit_opts["fit_tol"], max_iter=int(fit_opts["itermax"]), callback=progress)
    if not fit.converged:
        print(f"Warning: failed to converge, # iterations = {fit.iterations}")
    if args.verbose:
        print(fit)

    if args.pathfile:
        write_simplex_path(args.pathfile, names, start, fit.path,
                           "Fitting for apparent parameters/characteristic curve:",
                           converged=fit.converged)
        print(f"[WRITE] {args.pathfile}")

    elapsed = time.time() - started
    write_forward_report(outfile, config, probe, fit, command=" ".join(sys.argv),
                         comments=pfile.comments, started=started, elapsed=elapsed)
    print(f"[WRITE] {outfile}")

    if args.plots:
        summary = residual_summary(fit.curve, probe)
        base = os.path.splitext(outfile)[0]
        probe_curves([probe, fit.curve],
                     f"apparent alpha = {fit.alpha:.3f}, theta = {fit.theta:.3f}")
        plt.savefig(base + "_probe.png", dpi=150); plt.close()
        fit_residuals(fit.curve, probe, f"Characteristic curve, rmse = {summary['rmse']:.3g}")
        plt.savefig(base + "_residuals.png", dpi=150); plt.close()
        print(f"[WRITE] {base}_probe.png, {base}_residuals.png")
    return 0


if __name__ == "__main__":
    sys.exit(main())
