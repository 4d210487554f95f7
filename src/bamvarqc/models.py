from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Iterator, Optional, Tuple

import pysam


class EditOperator(enum.Enum):
    """Operators of a merged CIGAR + MD edit script."""

    MATCH = "m"
    MISMATCH = "u"
    INSERTION = "i"
    DELETION = "d"
    SKIPPED_REGION = "n"
    SOFT_CLIP = "s"
    HARD_CLIP = "h"
    PADDING = "p"
    UNSUPPORTED = "?"

    @classmethod
    def from_cigar(cls, op: str) -> "EditOperator":
        """Map a CIGAR operator character onto an edit operator.

        ``M`` maps to MATCH: whether each base is a match or a mismatch is only
        known once the MD tag is consulted. ``=``/``X`` and anything unknown map
        to UNSUPPORTED.
        """
        return _CIGAR_TO_OPERATOR.get(op, cls.UNSUPPORTED)

    @property
    def consumes_read(self) -> bool:
        return self in _READ_CONSUMING


_CIGAR_TO_OPERATOR = {
    "M": EditOperator.MATCH,
    "I": EditOperator.INSERTION,
    "D": EditOperator.DELETION,
    "N": EditOperator.SKIPPED_REGION,
    "S": EditOperator.SOFT_CLIP,
    "H": EditOperator.HARD_CLIP,
    "P": EditOperator.PADDING,
}

_READ_CONSUMING = frozenset(
    {
        EditOperator.MATCH,
        EditOperator.MISMATCH,
        EditOperator.INSERTION,
        EditOperator.SOFT_CLIP,
    }
)

_NO_BASES = frozenset(
    {
        EditOperator.MATCH,
        EditOperator.SKIPPED_REGION,
        EditOperator.SOFT_CLIP,
        EditOperator.HARD_CLIP,
        EditOperator.PADDING,
    }
)


class BuildStatus(enum.Enum):
    """Outcome of building an edit script for one read."""

    OK = "ok"
    UNMAPPED = "unmapped"
    MISSING_ANNOTATION = "missing_md"
    MISSING_OPERATOR_STRING = "missing_cigar"
    INCONSISTENT_ENCODING = "inconsistent"
    UNSUPPORTED_OPERATOR = "unsupported_operator"


@dataclass(frozen=True)
class EditScriptElement:
    """One run of the edit script.

    Attributes
    ----------
    operator:
        The edit operator. UNSUPPORTED never appears in a built script.
    length:
        Number of bases covered (> 0).
    bases:
        Empty for match/skip/clip/padding. For MISMATCH, ``length`` concatenated
        (reference, read) pairs, e.g. ``"ACGT"`` is A->C then G->T. For INSERTION,
        the inserted read bases. For DELETION, the deleted reference bases (or
        empty when the MD tag carried no base detail).
    """

    operator: EditOperator
    length: int
    bases: str = ""

    def __post_init__(self) -> None:
        if self.length <= 0:
            raise ValueError(f"Element length must be positive, got {self.length}")
        op = self.operator
        if op is EditOperator.UNSUPPORTED:
            raise ValueError("UNSUPPORTED operators cannot be stored in an edit script")
        if op in _NO_BASES:
            expected = (0,)
        elif op is EditOperator.MISMATCH:
            expected = (2 * self.length,)
        elif op is EditOperator.INSERTION:
            expected = (self.length,)
        else:
            expected = (self.length, 0)
        if len(self.bases) not in expected:
            raise ValueError(
                f"{op.name} of length {self.length} cannot carry bases {self.bases!r}"
            )

    def base_pairs(self) -> Iterator[str]:
        """Yield (reference, read) pairs of a MISMATCH element as 2-char strings."""
        for i in range(0, len(self.bases), 2):
            yield self.bases[i : i + 2]

    def __str__(self) -> str:
        return f"{self.length}{self.operator.value}{self.bases}"


@dataclass(frozen=True)
class EditScript:
    """Ordered, immutable sequence of edit script elements for one read."""

    elements: Tuple[EditScriptElement, ...] = field(default_factory=tuple)

    def __iter__(self) -> Iterator[EditScriptElement]:
        return iter(self.elements)

    def __len__(self) -> int:
        return len(self.elements)

    def __getitem__(self, idx: int) -> EditScriptElement:
        return self.elements[idx]

    def is_empty(self) -> bool:
        return not self.elements

    def read_length(self) -> int:
        """Number of read bases described (match, mismatch, insertion, soft clip)."""
        return sum(e.length for e in self.elements if e.operator.consumes_read)

    def __str__(self) -> str:
        return "".join(str(e) for e in self.elements)


EMPTY_SCRIPT = EditScript()


@dataclass(frozen=True)
class AlignmentRecord:
    """The fields of an aligned read that the edit script builder needs.

    ``cigar`` and ``md`` are the raw strings (``None`` when absent).
    ``sequence`` excludes hard-clipped bases, as stored in SAM/BAM.
    """

    name: str
    cigar: Optional[str]
    md: Optional[str]
    sequence: Optional[str]
    read_length: int
    is_unmapped: bool = False
    is_paired: bool = False
    is_read1: bool = False
    is_read2: bool = False
    is_reverse: bool = False

    @classmethod
    def from_segment(cls, read: pysam.AlignedSegment) -> "AlignmentRecord":
        md = read.get_tag("MD") if read.has_tag("MD") else None
        seq = read.query_sequence
        read_length = len(seq) if seq else int(read.infer_query_length() or 0)
        return cls(
            name=str(read.query_name),
            cigar=read.cigarstring,
            md=str(md) if md is not None else None,
            sequence=seq,
            read_length=read_length,
            is_unmapped=bool(read.is_unmapped),
            is_paired=bool(read.is_paired),
            is_read1=bool(read.is_read1),
            is_read2=bool(read.is_read2),
            is_reverse=bool(read.is_reverse),
        )


@dataclass(frozen=True)
class BuildResult:
    """Edit script, status and mate side for one read.

    ``is_first`` is False only for reads flagged as the second segment of a
    pair; unpaired reads and reads with ambiguous mate flags count as first.
    """

    script: EditScript
    status: BuildStatus
    is_first: bool = True

    @property
    def ok(self) -> bool:
        return self.status is BuildStatus.OK
