from __future__ import annotations

import logging
from typing import Any, Dict, List

import numpy as np

from .models import BuildResult, BuildStatus, EditOperator, EditScript
from .positions import PositionCounts

logger = logging.getLogger(__name__)

# (reference, read) base pairs, in report order
SUBSTITUTIONS = ("AC", "AG", "AT", "CA", "CG", "CT", "GA", "GC", "GT", "TA", "TC", "TG")
UNKNOWN_BASE = "N"
BASES = ("A", "C", "G", "T", UNKNOWN_BASE)

DEFAULT_POSITION_LENGTH = 150


class VariantCallStats:
    """Substitution, insertion and deletion statistics along reads.

    Feed every read through :meth:`process` (or :meth:`observe` /
    :meth:`record_skip`), then call :meth:`finalize_totals` once before reading
    any total. Positions are 0-based offsets along the read in sequencing
    orientation, i.e. along the (possibly reverse complemented) edit script.

    Reads flagged as second mates are counted separately from first mates;
    unpaired reads count as first mates.
    """

    def __init__(self, *, position_length: int = DEFAULT_POSITION_LENGTH) -> None:
        self.first_substitutions: Dict[str, int] = dict.fromkeys(SUBSTITUTIONS, 0)
        self.second_substitutions: Dict[str, int] = dict.fromkeys(SUBSTITUTIONS, 0)
        self.inserted_bases: Dict[str, int] = dict.fromkeys(BASES, 0)
        self.deleted_bases: Dict[str, int] = dict.fromkeys(BASES, 0)

        self.first_snp_pos = PositionCounts(position_length)
        self.first_insertion_pos = PositionCounts(position_length)
        self.first_deletion_pos = PositionCounts(position_length)
        self.second_snp_pos = PositionCounts(position_length)
        self.second_insertion_pos = PositionCounts(position_length)
        self.second_deletion_pos = PositionCounts(position_length)
        self.match_pos = PositionCounts(position_length)
        self.total_pos = PositionCounts(position_length)

        # read length -> number of reads of that length
        self.contributing_reads_per_pos: Dict[int, int] = {}

        self.total_reads = 0
        self.skipped_reads = 0
        self.unmapped_reads = 0
        self.missing_md_reads = 0
        self.missing_cigar_reads = 0
        self.inconsistent_reads = 0
        self.unsupported_reads = 0

        self.total_matches = 0
        self.total_substitutions = 0
        self.total_insertions = 0
        self.total_deletions = 0
        self.total = 0
        self.soft_clips = 0
        self.hard_clips = 0
        self.paddings = 0
        self.skipped_regions = 0
        self.reference_unknown_bases = 0
        self.read_unknown_bases = 0
        self.unclassified_substitutions = 0

        self.exist_paired_reads = False
        self.max_read_length = 0
        # one past the furthest position written; deletions can push it past the read length
        self.max_position = 0
        self._finalized = False

    # -----------------
    # Feeding reads
    # -----------------

    def process(self, result: BuildResult, read_length: int) -> None:
        """Count one read given the builder's result for it."""
        if result.ok:
            self.observe(result.script, result.is_first, read_length)
        else:
            self.record_skip(result.status)

    def record_skip(self, status: BuildStatus) -> None:
        """Count a read whose edit script could not be built."""
        if status is BuildStatus.UNMAPPED:
            self.unmapped_reads += 1
        elif status is BuildStatus.MISSING_ANNOTATION:
            self.missing_md_reads += 1
        elif status is BuildStatus.MISSING_OPERATOR_STRING:
            self.missing_cigar_reads += 1
        elif status is BuildStatus.INCONSISTENT_ENCODING:
            self.inconsistent_reads += 1
        elif status is BuildStatus.UNSUPPORTED_OPERATOR:
            self.unsupported_reads += 1
        else:
            raise ValueError(f"Cannot skip a read with status {status.name}")
        self.skipped_reads += 1
        self.total_reads += 1

    def observe(self, script: EditScript, is_first: bool, read_length: int) -> None:
        """Add the events of one successfully built edit script."""
        if is_first:
            table = self.first_substitutions
            snp_pos = self.first_snp_pos
            ins_pos = self.first_insertion_pos
            del_pos = self.first_deletion_pos
        else:
            table = self.second_substitutions
            snp_pos = self.second_snp_pos
            ins_pos = self.second_insertion_pos
            del_pos = self.second_deletion_pos

        pos = 0
        for el in script:
            op = el.operator
            if op is EditOperator.MATCH:
                self._reserve(pos + el.length)
                self.match_pos.increment_range(pos, pos + el.length)
                self.total_matches += el.length
                pos += el.length

            elif op is EditOperator.MISMATCH:
                self._reserve(pos + el.length)
                for pair in el.base_pairs():
                    if pair[0] == UNKNOWN_BASE:
                        self.reference_unknown_bases += 1
                    elif pair[1] == UNKNOWN_BASE:
                        self.read_unknown_bases += 1
                    elif pair in table:
                        table[pair] += 1
                        snp_pos.increment(pos)
                    else:
                        self.unclassified_substitutions += 1
                    pos += 1

            elif op is EditOperator.INSERTION:
                self._reserve(pos + el.length)
                for base in el.bases:
                    if base in self.inserted_bases:
                        self.inserted_bases[base] += 1
                    if base != UNKNOWN_BASE:
                        ins_pos.increment(pos)
                    pos += 1

            elif op is EditOperator.DELETION:
                self._reserve(pos + el.length)
                if not el.bases:
                    # MD without base detail: count every position
                    for i in range(el.length):
                        del_pos.increment(pos + i)
                else:
                    for i, base in enumerate(el.bases):
                        if base in self.deleted_bases:
                            self.deleted_bases[base] += 1
                        if base != UNKNOWN_BASE:
                            del_pos.increment(pos + i)
                pos += el.length

            elif op is EditOperator.SKIPPED_REGION:
                # spliced out of the read; no position advance
                self.skipped_regions += el.length

            elif op is EditOperator.SOFT_CLIP:
                # soft-clipped bases do not move the position cursor
                self.soft_clips += el.length

            elif op is EditOperator.HARD_CLIP:
                self.hard_clips += el.length

            elif op is EditOperator.PADDING:
                self.paddings += el.length

            else:
                raise ValueError(f"Unexpected operator {op.name} in edit script {script}")

        self.contributing_reads_per_pos[read_length] = (
            self.contributing_reads_per_pos.get(read_length, 0) + 1
        )
        self.max_read_length = max(self.max_read_length, read_length)
        self.max_position = max(self.max_position, pos)
        self.total_reads += 1
        self._finalized = False

    # -----------------
    # Totals
    # -----------------

    def finalize_totals(self) -> None:
        """Compute totals and the per-position total array.

        Safe to call more than once; later calls are no-ops until more reads
        are observed.
        """
        if self._finalized:
            return

        self._reserve(self.positions_covered())

        first_snp = self.first_snp_pos.values()
        second_snp = self.second_snp_pos.values()
        first_ins = self.first_insertion_pos.values()
        second_ins = self.second_insertion_pos.values()
        first_del = self.first_deletion_pos.values()
        second_del = self.second_deletion_pos.values()

        self.total_substitutions = int(first_snp.sum() + second_snp.sum())
        self.total_insertions = int(first_ins.sum() + second_ins.sum())
        self.total_deletions = int(first_del.sum() + second_del.sum())
        self.total_pos.set_values(
            first_snp + second_snp + first_ins + second_ins + first_del + second_del
            + self.match_pos.values()
        )

        # checked once here rather than per read
        self.exist_paired_reads = bool(
            second_snp.any() or second_ins.any() or second_del.any()
        )
        self.total = (
            self.total_matches
            + self.total_substitutions
            + self.total_insertions
            + self.total_deletions
            + self.soft_clips
        )
        self._finalized = True
        logger.debug(
            "Finalized variant statistics: %d reads (%d skipped), %d events",
            self.total_reads,
            self.skipped_reads,
            self.total,
        )

    @property
    def finalized(self) -> bool:
        return self._finalized

    def positions_covered(self) -> int:
        """Number of positions reported: the longest read or furthest position seen."""
        return max(self.max_read_length, self.max_position, 1)

    def substitutions(self, *, first: bool = True) -> Dict[str, int]:
        return dict(self.first_substitutions if first else self.second_substitutions)

    def positional_arrays(self) -> Dict[str, np.ndarray]:
        """All positional arrays, cut to the longest read seen."""
        self._require_finalized()
        length = self.positions_covered()
        return {
            "match": self.match_pos.values(length),
            "first_snp": self.first_snp_pos.values(length),
            "second_snp": self.second_snp_pos.values(length),
            "first_insertion": self.first_insertion_pos.values(length),
            "second_insertion": self.second_insertion_pos.values(length),
            "first_deletion": self.first_deletion_pos.values(length),
            "second_deletion": self.second_deletion_pos.values(length),
            "total": self.total_pos.values(length),
        }

    def to_dict(self) -> Dict[str, Any]:
        """JSON-serialisable summary of the scalar statistics."""
        self._require_finalized()
        return {
            "reads": {
                "total": self.total_reads,
                "skipped": self.skipped_reads,
                "unmapped": self.unmapped_reads,
                "missing_md": self.missing_md_reads,
                "missing_cigar": self.missing_cigar_reads,
                "inconsistent": self.inconsistent_reads,
                "unsupported_operator": self.unsupported_reads,
            },
            "totals": {
                "matches": self.total_matches,
                "substitutions": self.total_substitutions,
                "insertions": self.total_insertions,
                "deletions": self.total_deletions,
                "soft_clips": self.soft_clips,
                "hard_clips": self.hard_clips,
                "paddings": self.paddings,
                "skipped_regions": self.skipped_regions,
                "reference_unknown_bases": self.reference_unknown_bases,
                "read_unknown_bases": self.read_unknown_bases,
                "unclassified_substitutions": self.unclassified_substitutions,
                "total": self.total,
            },
            "first_substitutions": self.substitutions(first=True),
            "second_substitutions": self.substitutions(first=False),
            "inserted_bases": dict(self.inserted_bases),
            "deleted_bases": dict(self.deleted_bases),
            "exist_paired_reads": self.exist_paired_reads,
            "max_read_length": self.max_read_length,
            "positions_covered": self.positions_covered(),
            "contributing_reads_per_pos": {
                str(k): v for k, v in sorted(self.contributing_reads_per_pos.items())
            },
        }

    # -----------------
    # Internals
    # -----------------

    def _arrays(self) -> List[PositionCounts]:
        return [
            self.first_snp_pos,
            self.first_insertion_pos,
            self.first_deletion_pos,
            self.second_snp_pos,
            self.second_insertion_pos,
            self.second_deletion_pos,
            self.match_pos,
            self.total_pos,
        ]

    def _reserve(self, size: int) -> None:
        # grow all arrays together so they always share one length
        for arr in self._arrays():
            arr.reserve(size)

    def _require_finalized(self) -> None:
        if not self._finalized:
            raise RuntimeError("finalize_totals() must be called before reading results")
