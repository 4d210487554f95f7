"""BamVarQC: per-base substitution and indel QC for aligned sequencing reads.

The core merges each read's CIGAR string and MD tag into an edit script and
accumulates statistics from it; most users should use the CLI:

    bamvarqc scan --bam sample.bam --outdir results/

"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
