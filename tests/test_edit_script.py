import logging

import pysam
import pytest

from bamvarqc.edit_script import (
    EditScriptBuilder,
    build_edit_script,
    complement,
    parse_cigar,
    reverse_complement,
)
from bamvarqc.models import (
    AlignmentRecord,
    BuildStatus,
    EditOperator,
    EditScript,
    EditScriptElement,
)

M = EditOperator.MATCH
U = EditOperator.MISMATCH
I = EditOperator.INSERTION
D = EditOperator.DELETION


def make_record(cigar, md, seq, **flags) -> AlignmentRecord:
    return AlignmentRecord(
        name="r1",
        cigar=cigar,
        md=md,
        sequence=seq,
        read_length=len(seq) if seq else 0,
        **flags,
    )


def elements(result):
    return [(e.operator, e.length, e.bases) for e in result.script]


def test_match_only():
    res = build_edit_script(make_record("5M", "5", "ACGTA"))
    assert res.status is BuildStatus.OK
    assert elements(res) == [(M, 5, "")]


def test_md_match_run_spans_insertion():
    res = build_edit_script(make_record("3M1I3M", "6", "AAAGCCC"))
    assert res.ok
    assert elements(res) == [(M, 3, ""), (I, 1, "G"), (M, 3, "")]


def test_single_mismatch():
    res = build_edit_script(make_record("5M", "2A2", "AACGT"))
    assert res.ok
    assert elements(res) == [(M, 2, ""), (U, 1, "AC"), (M, 2, "")]


def test_adjacent_mismatches_share_one_element():
    res = build_edit_script(make_record("5M", "1A0C2", "GTGAA"))
    assert elements(res) == [(M, 1, ""), (U, 2, "ATCG"), (M, 2, "")]


def test_deletion():
    res = build_edit_script(make_record("3M2D3M", "3^AC3", "AAATTT"))
    assert res.ok
    assert elements(res) == [(M, 3, ""), (D, 2, "AC"), (M, 3, "")]


def test_mismatch_right_after_deletion():
    res = build_edit_script(make_record("2M1D3M", "2^G0T2", "AACAA"))
    assert elements(res) == [(M, 2, ""), (D, 1, "G"), (U, 1, "TC"), (M, 2, "")]


def test_combined_string_form():
    seq = "A" * 7 + "T" + "A" * 24 + "A" * 5 + "G" + "A" * 2 + "A" + "A" * 49
    res = build_edit_script(make_record("32M2D5M1I52M", "7G24^AA7C49", seq))
    assert res.ok
    assert str(res.script) == "7m1uGT24m2dAA5m1iG2m1uCA49m"
    assert res.script.read_length() == len(seq)


def test_clips_padding_and_skipped_region():
    res = build_edit_script(make_record("3H2S2M100N3M1P", "5", "GGACGTA"))
    assert res.ok
    assert [(e.operator, e.length) for e in res.script] == [
        (EditOperator.HARD_CLIP, 3),
        (EditOperator.SOFT_CLIP, 2),
        (M, 2),
        (EditOperator.SKIPPED_REGION, 100),
        (M, 3),
        (EditOperator.PADDING, 1),
    ]
    assert all(e.bases == "" for e in res.script)
    assert res.script.read_length() == 7


def test_unmapped_is_reported_before_anything_else():
    res = build_edit_script(make_record("garbage", None, "ACGT", is_unmapped=True))
    assert res.status is BuildStatus.UNMAPPED
    assert res.script.is_empty()


@pytest.mark.parametrize("md", [None, ""])
def test_missing_md(md):
    res = build_edit_script(make_record("4M", md, "ACGT"))
    assert res.status is BuildStatus.MISSING_ANNOTATION
    assert res.script.is_empty()


@pytest.mark.parametrize("cigar", [None, "", "*"])
def test_missing_cigar(cigar, caplog):
    with caplog.at_level(logging.WARNING, logger="bamvarqc.edit_script"):
        res = build_edit_script(make_record(cigar, "4", "ACGT"))
    assert res.status is BuildStatus.MISSING_OPERATOR_STRING
    assert "no CIGAR" in caplog.text


@pytest.mark.parametrize("cigar", ["3=2X", "2M3X", "5B"])
def test_unsupported_operator(cigar):
    res = build_edit_script(make_record(cigar, "5", "ACGTA"))
    assert res.status is BuildStatus.UNSUPPORTED_OPERATOR
    assert res.script.is_empty()


def test_deletion_without_marker_is_inconsistent(caplog):
    with caplog.at_level(logging.WARNING, logger="bamvarqc.edit_script"):
        res = build_edit_script(make_record("3M2D3M", "3AC3", "AAATTT"))
    assert res.status is BuildStatus.INCONSISTENT_ENCODING
    assert res.script.is_empty()
    # enough context to find the read again
    assert "3M2D3M" in caplog.text
    assert "3AC3" in caplog.text
    assert "2D" in caplog.text


@pytest.mark.parametrize(
    "cigar,md,seq",
    [
        ("3M2D3M", "6", "AAATTT"),  # match run still pending at the deletion
        ("3M4D", "3^AC", "AAA"),  # too few deleted bases
        ("3M2D", "3^1A", "AAA"),  # digits where deleted bases belong
        ("4M", "2", "AAAA"),  # MD shorter than the CIGAR
        ("3M", "5", "AAA"),  # MD longer than the CIGAR
        ("3M", "1^A1", "AAA"),  # deletion marker inside an aligned block
        ("3M", "1+1", "AAA"),  # junk character
        ("3M1I", "3", "AAA"),  # insertion past the end of the read
        ("3M", "3", "AAAAA"),  # CIGAR does not cover the read
        ("3M2", "3", "AAA"),  # malformed CIGAR
        ("3M", "2²", "AAA"),  # non-ASCII digit in a match run
        ("1M1D1M", "1^é1", "AA"),  # non-ASCII deleted base
        ("1M1D1M", "1^R1", "AA"),  # IUPAC code as a deleted base
    ],
)
def test_inconsistent_encodings(cigar, md, seq):
    res = build_edit_script(make_record(cigar, md, seq))
    assert res.status is BuildStatus.INCONSISTENT_ENCODING
    assert res.script.is_empty()


def test_missing_sequence_allows_matches_only():
    res = build_edit_script(make_record("4M", "4", None))
    assert res.ok
    assert elements(res) == [(M, 4, "")]

    res = build_edit_script(make_record("4M", "2A1", None))
    assert res.status is BuildStatus.INCONSISTENT_ENCODING


def test_unpaired_reverse_strand_is_flipped():
    res = build_edit_script(make_record("5M", "2A2", "AACGT", is_reverse=True))
    assert res.ok and res.is_first
    assert elements(res) == [(M, 2, ""), (U, 1, "TG"), (M, 2, "")]


def test_reverse_strand_flip_moves_events_to_the_other_end():
    res = build_edit_script(make_record("4M1I", "4", "AAAAC", is_reverse=True))
    assert elements(res) == [(I, 1, "G"), (M, 4, "")]


@pytest.mark.parametrize(
    "flags,is_first,flipped",
    [
        (dict(is_paired=True, is_read1=True), True, False),
        (dict(is_paired=True, is_read1=True, is_reverse=True), True, True),
        (dict(is_paired=True, is_read2=True), False, True),
        (dict(is_paired=True, is_read2=True, is_reverse=True), False, False),
        (dict(), True, False),
        (dict(is_reverse=True), True, True),
    ],
)
def test_mate_orientation(flags, is_first, flipped):
    res = build_edit_script(make_record("2M1I", "2", "ACG", **flags))
    assert res.ok
    assert res.is_first is is_first
    first = res.script[0]
    if flipped:
        assert (first.operator, first.bases) == (I, "C")
    else:
        assert first.operator is M


@pytest.mark.parametrize("read1,read2", [(True, True), (False, False)])
def test_ambiguous_mate_flags_treated_as_first(read1, read2, caplog):
    with caplog.at_level(logging.WARNING, logger="bamvarqc.edit_script"):
        res = build_edit_script(
            make_record("2M1I", "2", "ACG", is_paired=True, is_read1=read1, is_read2=read2, is_reverse=True)
        )
    assert res.ok and res.is_first
    assert res.script[0].operator is I
    assert "treating it as first mate" in caplog.text


def test_reverse_complement_values_and_involution():
    script = EditScript(
        (
            EditScriptElement(M, 2),
            EditScriptElement(U, 2, "ATCG"),
            EditScriptElement(I, 2, "GA"),
            EditScriptElement(D, 3, "ACT"),
            EditScriptElement(EditOperator.SOFT_CLIP, 4),
        )
    )
    rc = reverse_complement(script)
    assert [(e.operator, e.length, e.bases) for e in rc] == [
        (EditOperator.SOFT_CLIP, 4, ""),
        (D, 3, "AGT"),
        (I, 2, "TC"),
        (U, 2, "GCTA"),
        (M, 2, ""),
    ]
    assert reverse_complement(rc) == script


def test_complement_leaves_other_characters():
    assert complement("ACGTN-") == "TGCAN-"


def test_builder_is_reusable():
    builder = EditScriptBuilder()
    bad = builder.build(make_record("3M2D3M", "3AC3", "AAATTT"))
    good = builder.build(make_record("5M", "2A2", "AACGT"))
    assert bad.status is BuildStatus.INCONSISTENT_ENCODING
    assert elements(good) == [(M, 2, ""), (U, 1, "AC"), (M, 2, "")]


def test_parse_cigar():
    assert parse_cigar("10M2I3D") == [(10, "M"), (2, "I"), (3, "D")]


def test_element_validation():
    with pytest.raises(ValueError):
        EditScriptElement(U, 1, "A")
    with pytest.raises(ValueError):
        EditScriptElement(M, 0)
    with pytest.raises(ValueError):
        EditScriptElement(M, 2, "AC")
    with pytest.raises(ValueError):
        EditScriptElement(EditOperator.UNSUPPORTED, 1)
    # deletions may lack base detail
    assert EditScriptElement(D, 3).bases == ""


def test_record_from_segment():
    a = pysam.AlignedSegment()
    a.query_name = "seg1"
    a.query_sequence = "AACGT"
    a.flag = 0x1 | 0x80 | 0x10
    a.reference_start = 100
    a.mapping_quality = 60
    a.cigarstring = "5M"
    a.set_tag("MD", "2A2", value_type="Z")

    rec = AlignmentRecord.from_segment(a)
    assert rec.name == "seg1"
    assert rec.cigar == "5M"
    assert rec.md == "2A2"
    assert rec.read_length == 5
    assert rec.is_paired and rec.is_read2 and rec.is_reverse
    assert not rec.is_read1 and not rec.is_unmapped

    res = build_edit_script(rec)
    assert res.ok and not res.is_first
    # second mate on the reverse strand keeps its orientation
    assert elements(res) == [(M, 2, ""), (U, 1, "AC"), (M, 2, "")]
