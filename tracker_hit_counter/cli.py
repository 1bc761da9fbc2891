import argparse
import logging
import os
from typing import List, Optional, Sequence, Tuple

from tqdm import tqdm

from .cellid import DEFAULT_ENCODING, BitFieldCoder, EncodingError
from .edm4hep import DEFAULT_STEP_SIZE, TRACKER_BRANCHES, discover_files, iter_file_events, seed_from_path
from .event import RunHeader
from .geometry import GeometryError, load_detector
from .processor import ProcessorParameters, TrackerHitCounter
from .report import plot_layer_densities, write_report_json


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(
        description="Count simulated tracker hits per layer and report hit densities (hits/cm^2)."
    )
    ap.add_argument("inputs", nargs="*", help="EDM4hep ROOT files; each file is treated as one run")
    ap.add_argument("--geometry", required=True, help="JSON detector description with tracker layering")
    ap.add_argument("--base-dir", default=None, help="Directory to search for EDM4hep files instead of listing them")
    ap.add_argument("--pattern", default="*seed_*.edm4hep.root",
                    help="Glob pattern for input files under --base-dir (default: %(default)s)")
    ap.add_argument("--max-files", type=int, default=None, help="Limit number of files (for quick tests)")
    ap.add_argument("--collections", nargs="+", default=list(TRACKER_BRANCHES),
                    help="Tracker hit collections that will be analysed (default: %(default)s)")
    ap.add_argument("--encoding", default=DEFAULT_ENCODING,
                    help="Cell ID encoding of the hit collections (default: %(default)s)")
    ap.add_argument("--energy-threshold", type=float, default=0.0,
                    help="Minimum energy deposit in GeV for a hit to be counted (default: %(default)s)")
    ap.add_argument("--layer-offset", type=int, default=0,
                    help="Value of the cell ID layer field for the first geometry layer (default: %(default)s)")
    ap.add_argument("--tree", default="events", help="Name of the event tree (default: %(default)s)")
    ap.add_argument("--step-size", type=int, default=DEFAULT_STEP_SIZE,
                    help="Events read per chunk (default: %(default)s)")
    ap.add_argument("--report-json", default=None, help="Optional path to write (merge) the report JSON")
    ap.add_argument("--label", default=None, help="Key under which the report is stored (default: detector name)")
    ap.add_argument("--plot", action="store_true", help="Write per-subsystem hit density bar charts")
    ap.add_argument("--outdir", default=".", help="Directory for plots (default: %(default)s)")
    ap.add_argument("--formats", nargs="+", default=["png", "pdf"], help="Plot formats (default: %(default)s)")
    ap.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
                    help="Logging level")
    return ap.parse_args(argv)


def _collect_files(args: argparse.Namespace) -> List[Tuple[int, str]]:
    if args.inputs:
        files = []
        for ifile, fp in enumerate(args.inputs):
            seed = seed_from_path(fp)
            files.append((seed if seed is not None else ifile, fp))
    elif args.base_dir:
        files = discover_files(args.base_dir, args.pattern)
        if not files:
            logging.warning("No files matched pattern '%s' in %s", args.pattern, args.base_dir)
    else:
        raise SystemExit("No input files. Give them as arguments or use --base-dir.")
    if args.max_files is not None and args.max_files > 0 and len(files) > args.max_files:
        logging.info("Limiting to %d/%d files", args.max_files, len(files))
        files = files[:args.max_files]
    return files


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=getattr(logging, str(args.log_level).upper(), logging.INFO),
                        format="%(asctime)s %(levelname)s %(message)s")

    try:
        detector = load_detector(args.geometry)
    except (OSError, GeometryError) as exc:
        raise SystemExit(f"Cannot load geometry {args.geometry}: {exc}")
    try:
        BitFieldCoder(args.encoding)
    except EncodingError as exc:
        raise SystemExit(f"Bad --encoding: {exc}")

    files = _collect_files(args)

    processor = TrackerHitCounter(ProcessorParameters(
        trk_hit_collections=list(args.collections),
        energy_threshold=args.energy_threshold,
        layer_offset=args.layer_offset,
    ))
    processor.init(detector)

    for ifile, (run_number, fp) in enumerate(tqdm(files, desc="Files", disable=len(files) < 2)):
        logging.info("Processing file %d with run number = %d: %s", ifile, run_number, fp)
        processor.process_run_header(RunHeader(run_number=run_number, detector_name=detector.name, description=fp))
        try:
            for event in iter_file_events(fp, args.collections, args.encoding, run_number,
                                          tree_name=args.tree, step_size=args.step_size):
                processor.process_event(event)
                processor.check(event)
        except (OSError, KeyError, ValueError) as exc:
            logging.error("Failed reading %s: %s", fp, exc)
            processor.abort_run()

    report = processor.end()

    if args.report_json:
        write_report_json(args.report_json, report, args.label or detector.name or "default")
    if args.plot:
        written = plot_layer_densities(report, args.outdir, args.formats)
        logging.info("Saved %d figure(s) to %s", len(written), os.path.abspath(args.outdir))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
