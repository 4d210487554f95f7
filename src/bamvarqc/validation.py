from __future__ import annotations

import logging
from pathlib import Path

import pysam

from .utils import alignment_mode

logger = logging.getLogger(__name__)


_ALIGNMENT_SUFFIXES = (".bam", ".sam")


def check_alignment_path(path: str | Path) -> None:
    """Ensure an alignment file exists and is BAM or SAM; raise ValueError with fix instructions."""
    p = Path(path)
    if not p.exists():
        raise ValueError(f"Alignment file not found: {p}")
    if p.suffix.lower() not in _ALIGNMENT_SUFFIXES:
        raise ValueError(
            f"Unsupported alignment file {p.name}: expected .bam or .sam. "
            "Convert CRAM first: samtools view -b -T ref.fa -o out.bam in.cram"
        )


def probe_md_tags(path: str | Path, *, num_reads: int = 10_000) -> float:
    """Fraction of the first ``num_reads`` mapped reads that carry an MD tag.

    Unmapped reads are ignored. Returns 1.0 if no mapped read was seen, since
    there is nothing to complain about.
    """
    checked = 0
    with_md = 0
    with pysam.AlignmentFile(str(path), alignment_mode(path), check_sq=False) as bam:
        for read in bam.fetch(until_eof=True):
            if read.is_unmapped or read.cigartuples is None:
                continue
            checked += 1
            if read.has_tag("MD"):
                with_md += 1
            if checked >= num_reads:
                break
    if checked == 0:
        return 1.0
    return with_md / checked


def require_md_tags(path: str | Path, *, num_reads: int = 10_000) -> float:
    """Raise ValueError if no sampled read has an MD tag; warn if only some do."""
    frac = probe_md_tags(path, num_reads=num_reads)
    fix = f"Run: samtools calmd -b {path} ref.fa > with_md.bam"
    if frac == 0.0:
        raise ValueError("No MD tags found in the alignment file. " + fix)
    if frac < 1.0:
        logger.warning(
            "Only %.1f%% of sampled reads carry an MD tag; reads without one are skipped. %s",
            100.0 * frac,
            fix,
        )
    return frac
