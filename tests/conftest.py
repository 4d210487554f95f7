from pathlib import Path

import pysam
import pytest

from bamvarqc.toy_data import make_toy_data


@pytest.fixture
def toy(tmp_path: Path) -> dict:
    return make_toy_data(outdir=tmp_path / "toy")


@pytest.fixture
def bam_without_md(tmp_path: Path) -> Path:
    """A coordinate-sorted BAM whose mapped reads carry no MD tag."""
    header = {"HD": {"VN": "1.6", "SO": "coordinate"}, "SQ": [{"SN": "chr1", "LN": 200}]}
    path = tmp_path / "nomd.bam"
    with pysam.AlignmentFile(str(path), "wb", header=header) as bam:
        for i in range(3):
            a = pysam.AlignedSegment()
            a.query_name = f"r{i}"
            a.query_sequence = "ACGTACGTAC"
            a.flag = 0
            a.reference_id = 0
            a.reference_start = 10 * i
            a.mapping_quality = 60
            a.cigartuples = [(0, 10)]
            a.query_qualities = pysam.qualitystring_to_array("I" * 10)
            bam.write(a)
    return path
