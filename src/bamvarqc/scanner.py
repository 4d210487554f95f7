from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

import pysam
from tqdm import tqdm

from .edit_script import EditScriptBuilder
from .models import AlignmentRecord, BuildStatus
from .snp_frequencies import MutationCounter
from .utils import alignment_mode, ensure_outdir, open_textmaybe_gzip, write_json
from .variants import DEFAULT_POSITION_LENGTH, VariantCallStats

logger = logging.getLogger(__name__)

POSITION_COLUMNS = [
    "match",
    "first_snp",
    "second_snp",
    "first_insertion",
    "second_insertion",
    "first_deletion",
    "second_deletion",
    "total",
]


def write_positions_tsv(stats: VariantCallStats, path: str | Path) -> None:
    """Write raw per-position counts, one row per 0-based read position."""
    arrays = stats.positional_arrays()
    with open_textmaybe_gzip(path, "wt") as fh:
        fh.write("\t".join(["position"] + POSITION_COLUMNS) + "\n")
        n = len(arrays["total"])
        for i in range(n):
            fh.write(str(i) + "\t" + "\t".join(str(int(arrays[c][i])) for c in POSITION_COLUMNS) + "\n")


def scan_alignments(
    *,
    bam_path: str,
    outdir: str | Path,
    position_length: int = DEFAULT_POSITION_LENGTH,
    skip_duplicates: bool = False,
    include_secondary: bool = False,
    include_supplementary: bool = False,
    max_reads: Optional[int] = None,
    positions_tsv_gz: Optional[str] = None,
    progress: bool = True,
) -> Dict[str, Any]:
    """Main workhorse: stream alignments, build edit scripts, accumulate statistics.

    Writes ``summary.json`` and the per-position table into ``outdir`` and
    returns the summary dict.
    """
    t0 = time.time()
    outdir_path = ensure_outdir(outdir)

    if position_length < 1:
        raise ValueError("position_length must be >= 1")

    builder = EditScriptBuilder()
    stats = VariantCallStats(position_length=position_length)
    legacy = MutationCounter()

    counts = {
        "reads_seen": 0,
        "reads_skipped_secondary": 0,
        "reads_skipped_supplementary": 0,
        "reads_skipped_duplicates": 0,
        "reads_processed": 0,
    }
    status_counts = {s.value: 0 for s in BuildStatus}

    with pysam.AlignmentFile(bam_path, alignment_mode(bam_path), check_sq=False) as bam:
        it: Iterable[pysam.AlignedSegment] = bam.fetch(until_eof=True)
        if progress:
            it = tqdm(it, unit="read", desc="Scanning reads")

        for read in it:
            if max_reads is not None and counts["reads_seen"] >= max_reads:
                break
            counts["reads_seen"] += 1

            if read.is_secondary and not include_secondary:
                counts["reads_skipped_secondary"] += 1
                continue
            if read.is_supplementary and not include_supplementary:
                counts["reads_skipped_supplementary"] += 1
                continue
            if skip_duplicates and read.is_duplicate:
                counts["reads_skipped_duplicates"] += 1
                continue

            record = AlignmentRecord.from_segment(read)
            result = builder.build(record)
            status_counts[result.status.value] += 1

            stats.process(result, record.read_length)
            legacy.process(result)
            counts["reads_processed"] += 1

    stats.finalize_totals()

    if positions_tsv_gz is None:
        positions_tsv_gz = str(outdir_path / "positions.tsv.gz")
    write_positions_tsv(stats, positions_tsv_gz)

    dt = time.time() - t0
    if stats.inconsistent_reads:
        logger.warning(
            "%d reads had inconsistent CIGAR/MD encodings and were skipped.",
            stats.inconsistent_reads,
        )

    summary = {
        "bam_path": bam_path,
        "position_length": int(position_length),
        "skip_duplicates": bool(skip_duplicates),
        "include_secondary": bool(include_secondary),
        "include_supplementary": bool(include_supplementary),
        "max_reads": max_reads,
        "positions_tsv_gz": str(positions_tsv_gz),
        "counts": counts,
        "status_counts": status_counts,
        "variant_calls": stats.to_dict(),
        "snp_frequencies": legacy.to_dict(),
        "runtime_seconds": float(dt),
    }

    write_json(outdir_path / "summary.json", summary)
    logger.info(
        "Scanned %d reads in %.1fs (%d processed, %d skipped by the builder)",
        counts["reads_seen"],
        dt,
        counts["reads_processed"],
        stats.skipped_reads,
    )
    return summary
