"""Sovereignty scorer: final findings -> 0-100 score, grade, verdict."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from sovclean.config import DEFAULT_POLICY, Policy
from sovclean.models import (
    BLOCKED,
    CRITICAL,
    MAJOR,
    MINOR,
    REQUIRES_REVIEW,
    SOVEREIGN,
    Finding,
    SovereigntyScore,
)
from sovclean.rewriter import MANIFEST_UNPARSABLE

MISSING_REQUIRED_FILE_RULE = "missing-required-file"

# Findings that describe the project's shape, not its code
STRUCTURAL_RULE_IDS: frozenset[str] = frozenset({MANIFEST_UNPARSABLE, MISSING_REQUIRED_FILE_RULE})

GRADES: tuple[tuple[int, str], ...] = ((90, "A"), (80, "B"), (70, "C"), (60, "D"))


def grade_for(score: int) -> str:
    for floor, letter in GRADES:
        if score >= floor:
            return letter
    return "F"


def is_structural(finding: Finding) -> bool:
    return finding.rule_id in STRUCTURAL_RULE_IDS


def deduction(findings: Iterable[Finding], policy: Policy = DEFAULT_POLICY) -> int:
    total = Decimal(0)
    factor = Decimal(str(policy.quarantine_factor))
    for f in findings:
        weight = Decimal(policy.weight(f.severity))
        total += weight * factor if f.quarantined else weight
    return int(total.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def score_findings(findings: Iterable[Finding], policy: Policy = DEFAULT_POLICY) -> SovereigntyScore:
    """Compute the score once from the final finding set.

    An unquarantined critical finding or any structural issue rules out
    `sovereign` whatever the number says.
    """
    findings = list(findings)
    score = max(0, 100 - deduction(findings, policy))

    open_critical = any(f.severity == CRITICAL and not f.quarantined for f in findings)
    structural = any(is_structural(f) for f in findings)

    if score < policy.blocked_threshold:
        verdict = BLOCKED
    elif score >= policy.sovereign_threshold and not open_critical and not structural:
        verdict = SOVEREIGN
    else:
        verdict = REQUIRES_REVIEW

    counts = {sev: sum(1 for f in findings if f.severity == sev) for sev in (CRITICAL, MAJOR, MINOR)}
    return SovereigntyScore(score=score, verdict=verdict, grade=grade_for(score), counts=counts)
