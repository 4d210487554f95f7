from __future__ import annotations

from typing import Any, Dict

from .models import BuildResult, BuildStatus, EditOperator, EditScript
from .variants import BASES, SUBSTITUTIONS, UNKNOWN_BASE


class MutationCounter:
    """Overall substitution and indel frequencies, without read positions.

    A lighter sibling of :class:`~bamvarqc.variants.VariantCallStats`: one
    substitution table for all reads regardless of mate, and totals that are
    kept current after every read.
    """

    def __init__(self) -> None:
        self.substitutions: Dict[str, int] = dict.fromkeys(SUBSTITUTIONS, 0)
        self.inserted_bases: Dict[str, int] = dict.fromkeys(BASES, 0)
        self.deleted_bases: Dict[str, int] = dict.fromkeys(BASES, 0)
        self.total_matches = 0
        self.total_mutations = 0
        self.total_insertions = 0
        self.total_deletions = 0
        self.total = 0
        self.skipped_regions = 0
        # deletions whose MD carried no base detail
        self.unresolved_deletions = 0
        self.reference_unknown_bases = 0
        self.read_unknown_bases = 0
        self.skipped_reads = 0
        self.total_reads = 0

    def process(self, result: BuildResult) -> None:
        self.total_reads += 1
        if result.status is not BuildStatus.OK:
            self.skipped_reads += 1
            return
        self._count(result.script)
        self._compute_totals()

    def _count(self, script: EditScript) -> None:
        for el in script:
            op = el.operator
            if op is EditOperator.MATCH:
                self.total_matches += el.length
            elif op is EditOperator.MISMATCH:
                for pair in el.base_pairs():
                    if pair in self.substitutions:
                        self.substitutions[pair] += 1
                    elif pair[0] == UNKNOWN_BASE:
                        self.reference_unknown_bases += 1
                    elif pair[1] == UNKNOWN_BASE:
                        self.read_unknown_bases += 1
            elif op is EditOperator.INSERTION:
                for base in el.bases:
                    if base in self.inserted_bases:
                        self.inserted_bases[base] += 1
            elif op is EditOperator.DELETION:
                if not el.bases:
                    self.unresolved_deletions += el.length
                for base in el.bases:
                    if base in self.deleted_bases:
                        self.deleted_bases[base] += 1
            elif op is EditOperator.SKIPPED_REGION:
                self.skipped_regions += el.length
            # clips and padding carry no variant information

    def _compute_totals(self) -> None:
        self.total_mutations = sum(self.substitutions.values())
        # N insertions/deletions are kept out of the totals
        self.total_insertions = sum(v for k, v in self.inserted_bases.items() if k != UNKNOWN_BASE)
        self.total_deletions = self.unresolved_deletions + sum(
            v for k, v in self.deleted_bases.items() if k != UNKNOWN_BASE
        )
        self.total = self.total_mutations + self.total_insertions + self.total_deletions

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reads": {"total": self.total_reads, "skipped": self.skipped_reads},
            "substitutions": dict(self.substitutions),
            "inserted_bases": dict(self.inserted_bases),
            "deleted_bases": dict(self.deleted_bases),
            "totals": {
                "matches": self.total_matches,
                "mutations": self.total_mutations,
                "insertions": self.total_insertions,
                "deletions": self.total_deletions,
                "unresolved_deletions": self.unresolved_deletions,
                "skipped_regions": self.skipped_regions,
                "reference_unknown_bases": self.reference_unknown_bases,
                "read_unknown_bases": self.read_unknown_bases,
                "total": self.total,
            },
        }
