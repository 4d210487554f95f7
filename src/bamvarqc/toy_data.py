from __future__ import annotations

import random
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pysam

from .utils import ensure_outdir, write_json

# Edits along the reference, left to right:
#   ("=", n)      n matching bases
#   ("x", None)   one mismatch
#   ("i", bases)  inserted read bases
#   ("d", n)      n deleted reference bases
#   ("s", bases)  soft-clipped read bases
Edit = Tuple[str, object]

# name, flag, start0, edits, has_md
TOY_READS: List[Tuple[str, int, int, Sequence[Edit], bool]] = [
    ("toy_match", 0, 10, [("=", 60)], True),
    ("toy_snp", 0, 30, [("=", 20), ("x", None), ("=", 15), ("x", None), ("x", None), ("=", 23)], True),
    (
        "toy_indel",
        0,
        50,
        [("=", 25), ("i", "GA"), ("=", 10), ("d", 3), ("=", 10), ("x", None), ("=", 11)],
        True,
    ),
    ("toy_soft", 0, 70, [("s", "ACGTA"), ("=", 55)], True),
    ("toy_reverse", 16, 90, [("=", 40), ("x", None), ("=", 19)], True),
    ("toy_pair", 97, 120, [("=", 10), ("x", None), ("=", 49)], True),
    ("toy_pair", 145, 200, [("=", 30), ("d", 1), ("x", None), ("=", 29)], True),
    ("toy_nomd", 0, 250, [("=", 60)], False),
]


def _write_fasta(path: Path, contig: str, seq: str) -> None:
    lines = [f">{contig}"]
    for i in range(0, len(seq), 60):
        lines.append(seq[i : i + 60])
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def _mutate_base(base: str) -> str:
    for alt in ["A", "C", "G", "T"]:
        if alt != base:
            return alt
    return "A"


def simulate_alignment(ref_seq: str, start0: int, edits: Sequence[Edit]) -> Tuple[str, List[Tuple[int, int]], str]:
    """Apply ``edits`` to the reference from ``start0``.

    Returns ``(read_sequence, cigartuples, md_tag)``.
    """
    seq: List[str] = []
    cigar: List[Tuple[int, int]] = []
    md: List[str] = []
    run = 0
    ref_pos = start0

    def add_op(op: int, n: int) -> None:
        if cigar and cigar[-1][0] == op:
            cigar[-1] = (op, cigar[-1][1] + n)
        else:
            cigar.append((op, n))

    for kind, arg in edits:
        if kind == "=":
            n = int(arg)  # type: ignore[arg-type]
            seq.append(ref_seq[ref_pos : ref_pos + n])
            add_op(0, n)
            run += n
            ref_pos += n
        elif kind == "x":
            ref_base = ref_seq[ref_pos]
            seq.append(_mutate_base(ref_base))
            add_op(0, 1)
            md.append(f"{run}{ref_base}")
            run = 0
            ref_pos += 1
        elif kind == "i":
            seq.append(str(arg))
            add_op(1, len(str(arg)))
        elif kind == "d":
            n = int(arg)  # type: ignore[arg-type]
            md.append(f"{run}^{ref_seq[ref_pos : ref_pos + n]}")
            add_op(2, n)
            run = 0
            ref_pos += n
        elif kind == "s":
            seq.append(str(arg))
            add_op(4, len(str(arg)))
        else:
            raise ValueError(f"Unknown toy edit {kind!r}")
    md.append(str(run))
    return "".join(seq), cigar, "".join(md)


def _make_read(
    name: str,
    flag: int,
    seq: str,
    *,
    start0: int = -1,
    cigartuples: Optional[List[Tuple[int, int]]] = None,
    md: Optional[str] = None,
    mapq: int = 60,
) -> pysam.AlignedSegment:
    a = pysam.AlignedSegment()
    a.query_name = name
    a.query_sequence = seq
    a.flag = flag
    if cigartuples is None:
        a.reference_id = -1
        a.reference_start = -1
        a.mapping_quality = 0
    else:
        a.reference_id = 0
        a.reference_start = start0
        a.mapping_quality = mapq
        a.cigartuples = cigartuples
    a.query_qualities = pysam.qualitystring_to_array("I" * len(seq))
    if md is not None:
        a.set_tag("MD", md, value_type="Z")
    return a


def make_toy_data(*, outdir: str | Path) -> Dict[str, str]:
    """Create a tiny reference and BAM (with MD tags) for quick demos/tests.

    The BAM holds the reads in ``TOY_READS`` (matches, mismatches, indels,
    soft clips, both strands, a read pair, a read without MD) plus one unmapped
    read.

    Returns
    -------
    dict
        Paths to the generated files.
    """
    outdir_p = ensure_outdir(outdir)

    contig = "chr1"
    rng = random.Random(11)
    ref_seq = "".join(rng.choice("ACGT") for _ in range(400))
    ref_fa = outdir_p / "toy_ref.fa"
    _write_fasta(ref_fa, contig, ref_seq)
    pysam.faidx(str(ref_fa))

    bam_path = outdir_p / "toy.bam"
    header = {
        "HD": {"VN": "1.6", "SO": "coordinate"},
        "SQ": [{"SN": contig, "LN": len(ref_seq)}],
    }

    reads: List[pysam.AlignedSegment] = []
    for name, flag, start0, edits, has_md in TOY_READS:
        seq, cigartuples, md = simulate_alignment(ref_seq, start0, edits)
        reads.append(
            _make_read(
                name,
                flag,
                seq,
                start0=start0,
                cigartuples=cigartuples,
                md=md if has_md else None,
            )
        )
    reads.sort(key=lambda r: r.reference_start)
    reads.append(_make_read("toy_unmapped", 4, ref_seq[300:360]))

    with pysam.AlignmentFile(str(bam_path), "wb", header=header) as bam:
        for r in reads:
            bam.write(r)

    pysam.index(str(bam_path))

    summary = {
        "ref_fa": str(ref_fa),
        "toy_bam": str(bam_path),
        "outdir": str(outdir_p),
    }

    write_json(outdir_p / "toy_summary.json", summary)
    return summary
