"""Merge CIGAR and MD into a base-exact edit script.

The CIGAR string says *how* a read aligns (aligned blocks, insertions,
deletions, clips, splices) but an ``M`` block does not distinguish matches from
mismatches. The MD tag carries the reference bases for mismatches and deletions
interleaved with match run lengths, but knows nothing about insertions or clips.
Walking both at once gives the full picture, e.g.::

    CIGAR 32M2D5M1I52M + MD 7G24^AA7C49  ->  7m1uGT24m2dAA5m1iG2m1uCA49m

where the read carries T at the first mismatch and A at the second.

Scripts are normalised to the orientation the read came off the sequencer:
reverse-strand first mates (and unpaired reads) and forward-strand second mates
are reverse complemented, so positions along the script are sequencing cycles.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import List, Tuple

from .models import (
    EMPTY_SCRIPT,
    AlignmentRecord,
    BuildResult,
    BuildStatus,
    EditOperator,
    EditScript,
    EditScriptElement,
)

logger = logging.getLogger(__name__)

_CIGAR_RE = re.compile(r"([0-9]+)([^0-9])")
_MD_DIGITS = frozenset("0123456789")
_MD_BASES = frozenset("ACGTN")
_COMPLEMENT = str.maketrans("ACGTacgt", "TGCAtgca")


class InconsistentEncodingError(ValueError):
    """CIGAR and MD disagree for the read being parsed."""


def parse_cigar(cigar: str) -> List[Tuple[int, str]]:
    """Split a CIGAR string into ``(length, operator)`` pairs.

    Raises InconsistentEncodingError if the string is not a sequence of
    positive-length operations.
    """
    ops = []
    consumed = 0
    for m in _CIGAR_RE.finditer(cigar):
        if m.start() != consumed:
            break
        ops.append((int(m.group(1)), m.group(2)))
        consumed = m.end()
    if consumed != len(cigar) or not ops:
        raise InconsistentEncodingError(f"malformed CIGAR string {cigar!r}")
    if any(length == 0 for length, _ in ops):
        raise InconsistentEncodingError(f"zero-length operation in CIGAR {cigar!r}")
    return ops


def complement(bases: str) -> str:
    """Complement A<->T and C<->G; other characters pass through."""
    return bases.translate(_COMPLEMENT)


def reverse_complement(script: EditScript) -> EditScript:
    """Return the reverse complement of an edit script.

    Element order is reversed. Mismatch pairs are reversed as pairs and both the
    reference and read base of each pair are complemented; insertion and
    deletion bases are reversed and complemented. Elements without bases are
    reused unchanged. Applying the transform twice restores the input.
    """
    out: List[EditScriptElement] = []
    for el in reversed(script.elements):
        if not el.bases:
            out.append(el)
        elif el.operator is EditOperator.MISMATCH:
            pairs = list(el.base_pairs())
            pairs.reverse()
            out.append(EditScriptElement(el.operator, el.length, complement("".join(pairs))))
        else:
            out.append(EditScriptElement(el.operator, el.length, complement(el.bases[::-1])))
    return EditScript(tuple(out))


def mate_orientation(record: AlignmentRecord) -> Tuple[bool, bool]:
    """Return ``(is_first, needs_flip)`` from the flag bits of a read.

    Reads flagged as both or neither mate of a pair are treated as first mates.
    """
    if not record.is_paired:
        return True, record.is_reverse
    if record.is_read1 and not record.is_read2:
        return True, record.is_reverse
    if record.is_read2 and not record.is_read1:
        return False, not record.is_reverse
    logger.warning(
        "Read %s is paired but flagged as %s mate; treating it as first mate.",
        record.name,
        "both first and second" if record.is_read1 else "neither first nor second",
    )
    return True, record.is_reverse


@dataclass
class _ParserState:
    """Cursors for one CIGAR/MD walk. Built fresh for every read."""

    cigar: str
    md: str
    seq: str
    md_pos: int = 0
    read_pos: int = 0
    # matched bases announced by an MD number and not yet placed in the script
    pending_matches: int = 0
    elements: List[EditScriptElement] = field(default_factory=list)

    def fail(self, reason: str, length: int, op: str) -> InconsistentEncodingError:
        return InconsistentEncodingError(
            f"{reason} (CIGAR={self.cigar}, MD={self.md}, element={length}{op})"
        )

    def read_bases(self, n: int, length: int, op: str) -> str:
        end = self.read_pos + n
        if end > len(self.seq):
            raise self.fail("read sequence is shorter than the CIGAR requires", length, op)
        bases = self.seq[self.read_pos : end]
        self.read_pos = end
        return bases

    def advance(self, n: int, length: int, op: str) -> None:
        """Move the read cursor over bases whose identity is not recorded."""
        # SEQ may be '*' (e.g. secondary alignments); only bounds-check real sequence
        if self.seq and self.read_pos + n > len(self.seq):
            raise self.fail("read sequence is shorter than the CIGAR requires", length, op)
        self.read_pos += n

    def next_md_number(self) -> int:
        start = self.md_pos
        while self.md_pos < len(self.md) and self.md[self.md_pos] in _MD_DIGITS:
            self.md_pos += 1
        return int(self.md[start : self.md_pos])

    def skip_md_zeros(self) -> None:
        while self.md.startswith("0", self.md_pos):
            self.md_pos += 1


class EditScriptBuilder:
    """Build edit scripts from alignment records.

    The builder holds no per-read state, so one instance can be reused for a
    whole file. Problems with a read are reported through the returned
    :class:`BuildStatus`, never raised.
    """

    def build(self, record: AlignmentRecord) -> BuildResult:
        if record.is_unmapped:
            # Flag 0x4: CIGAR, MD and strand cannot be trusted.
            logger.debug("Read %s is unmapped; skipped.", record.name)
            return BuildResult(EMPTY_SCRIPT, BuildStatus.UNMAPPED)

        if not record.md:
            logger.debug("Read %s has no MD tag; skipped.", record.name)
            return BuildResult(EMPTY_SCRIPT, BuildStatus.MISSING_ANNOTATION)

        if not record.cigar or record.cigar == "*":
            logger.warning(
                "Read %s has no CIGAR string (MD=%s); skipped.", record.name, record.md
            )
            return BuildResult(EMPTY_SCRIPT, BuildStatus.MISSING_OPERATOR_STRING)

        state = _ParserState(cigar=record.cigar, md=record.md, seq=(record.sequence or "").upper())
        try:
            status = self._walk(state)
        except InconsistentEncodingError as e:
            logger.warning("Read %s: CIGAR and MD are inconsistent: %s", record.name, e)
            return BuildResult(EMPTY_SCRIPT, BuildStatus.INCONSISTENT_ENCODING)
        if status is not BuildStatus.OK:
            return BuildResult(EMPTY_SCRIPT, status)

        script = EditScript(tuple(state.elements))
        is_first, flip = mate_orientation(record)
        if flip:
            script = reverse_complement(script)
        return BuildResult(script, BuildStatus.OK, is_first)

    def _walk(self, state: _ParserState) -> BuildStatus:
        for length, op in parse_cigar(state.cigar):
            operator = EditOperator.from_cigar(op)
            if operator is EditOperator.MATCH:
                self._aligned_block(state, length, op)
            elif operator is EditOperator.INSERTION:
                # MD does not describe insertions.
                bases = state.read_bases(length, length, op)
                state.elements.append(EditScriptElement(operator, length, bases))
            elif operator is EditOperator.DELETION:
                self._deletion(state, length, op)
            elif operator is EditOperator.SOFT_CLIP:
                # bases are in SEQ but not recorded
                state.advance(length, length, op)
                state.elements.append(EditScriptElement(operator, length))
            elif operator in (
                EditOperator.SKIPPED_REGION,
                EditOperator.HARD_CLIP,
                EditOperator.PADDING,
            ):
                state.elements.append(EditScriptElement(operator, length))
            elif operator is EditOperator.UNSUPPORTED:
                logger.debug(
                    "CIGAR operator %r is unsupported (CIGAR=%s); read skipped.", op, state.cigar
                )
                return BuildStatus.UNSUPPORTED_OPERATOR
            else:
                raise AssertionError(f"unhandled edit operator {operator}")

        self._check_exhausted(state)
        return BuildStatus.OK

    def _aligned_block(self, state: _ParserState, length: int, op: str) -> None:
        """Split one CIGAR ``M`` block into MATCH and MISMATCH elements."""
        remaining = length
        mismatch_open = False
        while remaining > 0:
            if state.pending_matches > 0:
                n = min(state.pending_matches, remaining)
                state.advance(n, length, op)
                state.elements.append(EditScriptElement(EditOperator.MATCH, n))
                state.pending_matches -= n
                remaining -= n
                mismatch_open = False
                continue

            if state.md_pos >= len(state.md):
                raise state.fail("MD tag is shorter than expected", length, op)

            ch = state.md[state.md_pos]
            if ch in _MD_DIGITS:
                # a bare 0 separates adjacent mismatches/deletions
                state.pending_matches = state.next_md_number()
                continue

            ref_base = ch.upper()
            if ref_base not in _MD_BASES:
                raise state.fail(f"unexpected character {ch!r} in MD tag", length, op)
            state.md_pos += 1
            pair = ref_base + state.read_bases(1, length, op)
            if mismatch_open:
                last = state.elements[-1]
                state.elements[-1] = EditScriptElement(
                    EditOperator.MISMATCH, last.length + 1, last.bases + pair
                )
            else:
                state.elements.append(EditScriptElement(EditOperator.MISMATCH, 1, pair))
                mismatch_open = True
            remaining -= 1

    def _deletion(self, state: _ParserState, length: int, op: str) -> None:
        if state.pending_matches != 0:
            raise state.fail(
                "MD match run not fully consumed when the deletion starts", length, op
            )
        state.skip_md_zeros()
        if not state.md.startswith("^", state.md_pos):
            raise state.fail("deletion marker '^' not found in MD tag", length, op)
        start = state.md_pos + 1
        end = start + length
        deleted = state.md[start:end].upper()
        if len(deleted) < length:
            raise state.fail("MD tag is shorter than expected", length, op)
        if not all(b in _MD_BASES for b in deleted):
            raise state.fail(f"unexpected deleted bases {deleted!r} in MD tag", length, op)
        state.md_pos = end
        state.elements.append(EditScriptElement(EditOperator.DELETION, length, deleted))

    def _check_exhausted(self, state: _ParserState) -> None:
        state.skip_md_zeros()
        if state.pending_matches or state.md_pos < len(state.md):
            raise InconsistentEncodingError(
                f"MD tag describes more bases than the CIGAR "
                f"(CIGAR={state.cigar}, MD={state.md}, unparsed={state.md[state.md_pos:]!r})"
            )
        if state.seq and state.read_pos != len(state.seq):
            raise InconsistentEncodingError(
                f"CIGAR covers {state.read_pos} read bases but the read has {len(state.seq)} "
                f"(CIGAR={state.cigar}, MD={state.md})"
            )


def build_edit_script(record: AlignmentRecord) -> BuildResult:
    """Build the edit script of one record."""
    return EditScriptBuilder().build(record)
