"""
normal-to-height: reconstruct height maps from tangent-space normal maps.

    normal-to-height rocks_n.png -g -r
    normal-to-height --synthetic bumps --size 128 --method linear-system --warm-start
"""
import argparse
import json
import logging
import os
import sys


from heightgen.config import (BORDER_COLOR, BORDER_WIDTH, COMBINED_VIEW_ITERATIONS, DEFAULT_ITERATIONS,
                              DEFAULT_SIZE, Options)
from heightgen.errors import ImageShapeError, SolverSetupError
from heightgen.generate import HeightGenMethod, generate_height_map, generate_iteration_sweep
from heightgen.height_to_normal import NormalCalcMethod, normal_map_from_height_map, pack_normal_map
from heightgen.image_io import (load_normal_map, save_combined_view, save_diff_image, save_heatmap,
                                save_height_map, save_line_plot, save_normal_map)
from heightgen.metrics import compare_normal_maps, diff_normal_maps, image_mse, mse_to_psnr
from heightgen.synthetic import SURFACES, synthetic_normal_map

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> Options:
    parser = argparse.ArgumentParser(prog="normal-to-height",
                                     description="Generate a height map from a normal map.")
    parser.add_argument("normal_map", nargs="?", help="input normal map (png/tga/jpg/bmp or .npy)")
    parser.add_argument("-f", "--flipY", dest="flip_y", action="store_true",
                        help="the normal map is Y-up (OpenGL style)")
    parser.add_argument("-x", "--flipX", dest="flip_x", action="store_true", help="negate the normals' X")
    parser.add_argument("-g", "--genNormalMap", dest="gen_normals", action="store_true",
                        help="re-estimate normals from the height map and report PSNR")
    parser.add_argument("-i", "--iterations", type=int, default=DEFAULT_ITERATIONS,
                        help="relaxation iterations per level (default: %(default)s)")
    parser.add_argument("-r", "--range", dest="range_of_iterations", action="store_true",
                        help="sweep a fixed range of iteration counts")
    parser.add_argument("-s", "--slopeScale", dest="slope_scale", type=float, default=1.0,
                        help="multiply the slopes before integrating (default: %(default)s)")
    parser.add_argument("--method", choices=[m.value for m in HeightGenMethod], default="relaxation")
    parser.add_argument("--iteration-multiplier", type=float, default=1.0,
                        help="iteration budget factor at full resolution")
    parser.add_argument("--max-iterations", type=int, default=2000, help="linear-system iteration cap")
    parser.add_argument("--tolerance", type=float, default=1e-6, help="linear-system relative tolerance")
    parser.add_argument("--warm-start", action="store_true", help="seed the linear system with a relaxation solve")
    parser.add_argument("--max-edge-level", type=int, default=None,
                        help="edge-aware: coarsest pyramid level that uses edge weights")
    parser.add_argument("--workers", type=int, default=None, help="threads for the banded row sweep")
    parser.add_argument("--diff", action="store_true", help="with -g, also write difference images")
    parser.add_argument("--plots", action="store_true", help="write matplotlib heat maps and PSNR plots")
    parser.add_argument("--raw", action="store_true", help="write unpacked heights (.npy only)")
    parser.add_argument("--synthetic", choices=sorted(SURFACES), default=None,
                        help="use a synthetic surface instead of an input file")
    parser.add_argument("--size", type=int, default=DEFAULT_SIZE, help="synthetic surface size")
    parser.add_argument("-o", "--output-dir", default=None, help="default: <stem>_autogen next to the input")
    parser.add_argument("--log-file", default=None, help="also write the log to this file")
    args = parser.parse_args(argv)

    if args.normal_map is None and args.synthetic is None:
        parser.error("give a normal map or --synthetic NAME")
    if args.iterations < 1:
        parser.error("--iterations must be at least 1")
    if args.size < 1:
        parser.error("--size must be at least 1")
    if args.range_of_iterations and args.method not in ("relaxation", "edge-aware"):
        parser.error("--range needs a relaxation method")

    return Options(
        normal_map_path=args.normal_map, method=args.method, iterations=args.iterations,
        iteration_multiplier=args.iteration_multiplier, slope_scale=args.slope_scale,
        flip_y=args.flip_y, flip_x=args.flip_x, output_gen_normals=args.gen_normals,
        range_of_iterations=args.range_of_iterations, max_iterations=args.max_iterations,
        tolerance=args.tolerance, warm_start=args.warm_start, max_edge_level=args.max_edge_level,
        workers=args.workers, diff=args.diff, plots=args.plots, raw=args.raw, synthetic=args.synthetic,
        size=args.size, output_dir=args.output_dir, log_file=args.log_file,
        normal_methods=list(NormalCalcMethod))


def _output_layout(options: Options):
    """(output dir, file stem, extension) for this run."""
    if options.synthetic:
        stem, ext = options.synthetic, ".png"
        parent = "."
    else:
        parent, name = os.path.split(os.path.abspath(options.normal_map_path))
        stem, ext = os.path.splitext(name)
    out_dir = options.output_dir or os.path.join(parent, f"{stem}_autogen")
    os.makedirs(out_dir, exist_ok=True)
    return out_dir, stem, ext or ".png"


def _validate_normals(options, normal_map, results, out_dir, stem, ext, tag):
    """Re-estimate normals per method, log PSNR and write them out. Returns {method: (psnr, packed)}."""
    scores = {}
    for method in options.normal_methods:
        estimated = normal_map_from_height_map(results.height_map, method)
        psnr = mse_to_psnr(image_mse(normal_map, estimated), 2.0)
        dot_psnr = compare_normal_maps(normal_map, estimated)
        print(f"  {method.value:>9}: PSNR = {psnr:.3f} dB (dot PSNR = {dot_psnr:.3f} dB)")
        base = os.path.join(out_dir, f"{stem}_{tag}n_{results.iterations}_{method.value}")
        save_normal_map(base + ext, estimated, options.flip_y, options.flip_x)
        if options.diff:
            save_diff_image(base + "_diff" + ext, diff_normal_maps(normal_map, estimated))
        scores[method] = (psnr, pack_normal_map(estimated, options.flip_y, options.flip_x))
    return scores


def process(options: Options) -> dict:
    """Run one configured generation and write every output; returns the results.json payload."""
    truth = None
    if options.synthetic:
        normal_map, truth = synthetic_normal_map(options.synthetic, options.size)
    else:
        normal_map = load_normal_map(options.normal_map_path, options.flip_y, options.flip_x)
    out_dir, stem, ext = _output_layout(options)
    height, width = normal_map.shape[:2]
    print(f"Loaded {width}x{height} normal map, writing to {out_dir}")

    method = HeightGenMethod(options.method)
    kwargs = dict(iteration_multiplier=options.iteration_multiplier, slope_scale=options.slope_scale,
                  max_iterations=options.max_iterations, tolerance=options.tolerance,
                  warm_start=options.warm_start, workers=options.workers,
                  max_edge_level=options.max_edge_level)
    report = {"input": options.synthetic or options.normal_map_path, "width": width, "height": height,
              "method": method.value, "runs": []}

    if method.is_relaxation:
        all_results = generate_iteration_sweep(normal_map, options.iterations_list, method, **kwargs)
    else:
        try:
            all_results = [generate_height_map(normal_map, method, options.iterations, **kwargs)]
        except SolverSetupError as e:
            logger.error("%s solver failed (%s); falling back to relaxation", method.value, e)
            report["error"] = str(e)
            report["fallback"] = HeightGenMethod.RELAXATION.value
            method = HeightGenMethod.RELAXATION
            all_results = [generate_height_map(normal_map, method, options.iterations, **kwargs)]

    tag = "g" if method.is_relaxation else "gl"
    psnr_curve = []
    combined_heights, combined_normals = [], []
    for results in all_results:
        print(f"Finished {width}x{height} image with {results.iterations} iterations "
              f"in {results.time_to_generate:.2f} seconds ({results.method})")
        if results.converged is not None:
            print(f"  solver: {results.iterations}/{results.max_iterations} iterations, "
                  f"error {results.solver_error:.3e}, converged={results.converged}")
        save_height_map(os.path.join(out_dir, f"{stem}_{tag}h_{results.iterations}{ext}"), results.height_map)
        if options.raw:
            save_height_map(os.path.join(out_dir, f"{stem}_{tag}h_{results.iterations}_raw.npy"),
                            results.height_map, raw=True)
        if options.plots:
            save_heatmap(results.height_map.raw(), os.path.join(out_dir, f"{stem}_{tag}h_{results.iterations}_plot.png"),
                         f"Height ({results.method}, {results.iterations} iterations)")
            if truth is not None:
                raw = results.height_map.raw()
                error = (raw - raw.mean()) - (truth - truth.mean())
                save_heatmap(error, os.path.join(out_dir, f"{stem}_{tag}h_{results.iterations}_error.png"),
                             "Height error vs ground truth", cmap="coolwarm", center_zero=True)

        run = results.summary()
        if options.output_gen_normals:
            scores = _validate_normals(options, normal_map, results, out_dir, stem, ext, tag)
            run["psnr"] = {m.value: s[0] for m, s in scores.items()}
            psnr_curve.append(scores[NormalCalcMethod.CROSS][0] if NormalCalcMethod.CROSS in scores else None)
        if options.range_of_iterations and results.iterations in COMBINED_VIEW_ITERATIONS:
            combined_heights.append(results.height_map.data)
            if options.output_gen_normals and NormalCalcMethod.CROSS in scores:
                combined_normals.append(scores[NormalCalcMethod.CROSS][1])
        report["runs"].append(run)

    if combined_heights:
        save_combined_view(os.path.join(out_dir, f"{stem}_{tag}h_combined{ext}"), combined_heights,
                           combined_normals or None, BORDER_WIDTH, BORDER_COLOR)
    if options.plots and options.range_of_iterations and psnr_curve and None not in psnr_curve:
        save_line_plot([r.iterations for r in all_results], psnr_curve,
                       os.path.join(out_dir, f"{stem}_psnr_vs_iterations.png"),
                       "Normal PSNR vs iterations", "Iterations", "PSNR (dB)", logx=True)

    with open(os.path.join(out_dir, "results.json"), "w") as f:
        json.dump(report, f, indent=2, default=float)
    print(f"Saved results to {os.path.join(out_dir, 'results.json')}")
    return report


def _configure_logging(log_file=None):
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s", handlers=handlers,
                        force=True)


def main(argv=None) -> int:
    options = parse_args(argv)
    _configure_logging(options.log_file)
    if options.normal_map_path and not os.path.exists(options.normal_map_path):
        logger.error("Normal map %s not found", options.normal_map_path)
        return 1
    try:
        process(options)
    except (ImageShapeError, ValueError, OSError) as e:
        logger.error("%s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
