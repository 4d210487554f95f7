from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from . import __version__
from .scanner import scan_alignments
from .toy_data import make_toy_data
from .utils import ensure_outdir
from .validation import check_alignment_path, require_md_tags
from .variants import DEFAULT_POSITION_LENGTH


def _setup_logging(verbosity: int, *, logfile: Optional[Path] = None) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    log_fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    logging.basicConfig(level=level, format=log_fmt, stream=sys.stderr)

    if logfile is not None:
        logfile.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(logfile)
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(log_fmt))
        logging.getLogger().addHandler(fh)


def _path_exists(p: str) -> str:
    if not Path(p).exists():
        raise argparse.ArgumentTypeError(f"Path does not exist: {p}")
    return p


def _positive_int(v: str) -> int:
    try:
        n = int(v)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected an integer, got {v!r}") from None
    if n < 1:
        raise argparse.ArgumentTypeError(f"Expected a positive integer, got {n}")
    return n


def _log_path(outdir: Path, name: str) -> Path:
    return outdir / "logs" / name


def _handle_error(err: Exception, *, log_path: Optional[Path] = None) -> int:
    msg = f"{err.__class__.__name__}: {err}"
    sys.stderr.write(msg + "\n")
    if log_path is not None:
        sys.stderr.write(f"See log: {log_path}\n")
    return 2


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="bamvarqc",
        description=(
            "BamVarQC: per-base substitution, insertion and deletion QC for aligned reads, "
            "built by merging each read's CIGAR string with its MD tag."
        ),
    )
    p.add_argument("--version", action="version", version=f"bamvarqc {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)

    # -----------------
    # quickstart
    # -----------------
    sub.add_parser(
        "quickstart",
        help="Print ready-to-run recipes for common scenarios.",
    )

    # -----------------
    # make-toy-data
    # -----------------
    t = sub.add_parser(
        "make-toy-data",
        help="Generate a tiny reference and BAM (with MD tags) for demos/tests.",
    )
    t.add_argument("--outdir", required=True, help="Output directory for toy data.")
    t.add_argument("--dry-run", action="store_true", help="Validate paths without writing files.")

    # -----------------
    # scan
    # -----------------
    s = sub.add_parser(
        "scan",
        help="Collect substitution/indel statistics along reads from a BAM/SAM with MD tags.",
    )
    s.add_argument("--bam", required=True, type=_path_exists, help="Input BAM or SAM (MD tags required).")
    s.add_argument("--outdir", required=True, help="Output directory.")
    s.add_argument(
        "--position-length",
        type=_positive_int,
        default=DEFAULT_POSITION_LENGTH,
        help="Initial size of the per-position arrays (grown automatically for longer reads).",
    )
    s.add_argument(
        "--max-reads",
        type=_positive_int,
        default=None,
        help="Stop after this many records (default: whole file).",
    )
    s.add_argument(
        "--md-probe-reads",
        type=_positive_int,
        default=10_000,
        help="Number of mapped reads sampled to check for MD tags before scanning.",
    )

    # Read filters
    s.add_argument("--skip-duplicates", action="store_true", help="Skip reads flagged as duplicates.")
    s.add_argument("--include-secondary", action="store_true", help="Include secondary alignments.")
    s.add_argument(
        "--include-supplementary", action="store_true", help="Include supplementary alignments."
    )

    # Outputs
    s.add_argument(
        "--positions-tsv",
        default=None,
        help="Optional path for the per-position TSV.GZ (default: outdir/positions.tsv.gz).",
    )
    s.add_argument("--no-progress", action="store_true", help="Disable the progress bar.")
    s.add_argument("--dry-run", action="store_true", help="Validate inputs and print planned outputs.")
    s.add_argument("--resume", action="store_true", help="Skip if outputs already exist.")

    s.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    return p


# -----------------
# Command handlers
# -----------------

def cmd_quickstart() -> int:
    lines = [
        "BamVarQC quickstart (copy/paste):",
        "",
        "1) Scan a BAM with MD tags:",
        "   bamvarqc scan \\",
        "     --bam sample.bam \\",
        "     --outdir results/",
        "   Outputs: results/summary.json, results/positions.tsv.gz",
        "",
        "2) BAM without MD tags (add them first):",
        "   samtools calmd -b sample.bam ref.fa > sample.md.bam",
        "   bamvarqc scan --bam sample.md.bam --outdir results/",
        "",
        "3) Try it on toy data:",
        "   bamvarqc make-toy-data --outdir toy/",
        "   bamvarqc scan --bam toy/toy.bam --outdir toy_results/",
        "",
        "Tip: use --dry-run to validate inputs, -v for progress logging.",
    ]
    print("\n".join(lines))
    return 0


def cmd_make_toy_data(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    if args.dry_run:
        print(f"Would write toy data into: {outdir}")
        return 0

    summary = make_toy_data(outdir=outdir)
    print(json.dumps(summary, indent=2))
    return 0


def cmd_scan(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    log_path = _log_path(outdir, "scan.log")
    _setup_logging(args.verbose, logfile=None if args.dry_run else log_path)

    logger = logging.getLogger("bamvarqc")
    logger.info("bamvarqc %s", __version__)

    try:
        check_alignment_path(args.bam)
        md_fraction = require_md_tags(args.bam, num_reads=int(args.md_probe_reads))

        if args.dry_run:
            print("Dry-run: inputs look OK.")
            print(f"Sampled reads with MD tag: {100.0 * md_fraction:.1f}%")
            print("Planned outputs:")
            print(f"  summary.json -> {outdir / 'summary.json'}")
            print(f"  positions.tsv.gz -> {args.positions_tsv or outdir / 'positions.tsv.gz'}")
            return 0

        outdir = ensure_outdir(outdir)
        summary_path = outdir / "summary.json"

        if args.resume and summary_path.exists():
            logger.info("Resume enabled: summary.json already exists in %s", outdir)
            print(str(summary_path))
            return 0

        summary = scan_alignments(
            bam_path=args.bam,
            outdir=outdir,
            position_length=int(args.position_length),
            skip_duplicates=bool(args.skip_duplicates),
            include_secondary=bool(args.include_secondary),
            include_supplementary=bool(args.include_supplementary),
            max_reads=args.max_reads,
            positions_tsv_gz=args.positions_tsv,
            progress=not bool(args.no_progress),
        )

        reads = summary["variant_calls"]["reads"]
        logger.info(
            "Reads: %d total, %d skipped (%d unmapped, %d missing MD, %d inconsistent)",
            reads["total"],
            reads["skipped"],
            reads["unmapped"],
            reads["missing_md"],
            reads["inconsistent"],
        )
        print(str(summary_path))
        return 0
    except Exception as e:
        return _handle_error(e, log_path=log_path)


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.cmd == "quickstart":
        return cmd_quickstart()
    if args.cmd == "make-toy-data":
        return cmd_make_toy_data(args)
    if args.cmd == "scan":
        return cmd_scan(args)

    parser.error(f"Unknown command: {args.cmd}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
