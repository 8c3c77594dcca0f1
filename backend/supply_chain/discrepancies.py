"""
Discrepancy Classifier — ordered vs. received quantity.

A pure function of (ordered, received, is_backorder) plus an optional
operator override. No hidden state, no timestamps.

Rules:
  received == 0                          → NONE (nothing entered yet)
  received <  ordered, backorder         → PENDING_BACKORDER
  received <  ordered, no backorder      → SHORT
  received >  ordered                    → OVER
  received == ordered                    → NONE
  operator override DAMAGE/SUBSTITUTION  → that type, regardless of quantities

None of the categories block confirmation. SHORT, OVER, DAMAGE and
SUBSTITUTION are surfaced for review and are loggable as discrepancy
records; PENDING_BACKORDER is informational only.
"""

from dataclasses import dataclass
from enum import Enum


class DiscrepancyType(str, Enum):
    NONE = "NONE"
    SHORT = "SHORT"
    OVER = "OVER"
    DAMAGE = "DAMAGE"
    SUBSTITUTION = "SUBSTITUTION"
    PENDING_BACKORDER = "PENDING_BACKORDER"


MANUAL_OVERRIDES = frozenset({DiscrepancyType.DAMAGE, DiscrepancyType.SUBSTITUTION})

# Types that may be persisted as a discrepancy record
LOGGABLE_TYPES = frozenset(
    {DiscrepancyType.SHORT, DiscrepancyType.OVER, DiscrepancyType.DAMAGE, DiscrepancyType.SUBSTITUTION}
)


@dataclass(frozen=True)
class Classification:
    type: DiscrepancyType
    blocks_confirmation: bool = False

    @property
    def is_discrepancy(self) -> bool:
        return self.type in LOGGABLE_TYPES


def classify(
    ordered: int,
    received: int,
    is_backorder: bool = False,
    override: DiscrepancyType | str | None = None,
) -> Classification:
    """Classify one line. ``override`` accepts only DAMAGE or SUBSTITUTION."""
    if override is not None:
        override_type = DiscrepancyType(override)
        if override_type not in MANUAL_OVERRIDES:
            raise ValueError(f"Manual override must be DAMAGE or SUBSTITUTION, got '{override_type.value}'")
        return Classification(type=override_type)

    if received == 0:
        return Classification(type=DiscrepancyType.NONE)
    if received < ordered:
        if is_backorder:
            return Classification(type=DiscrepancyType.PENDING_BACKORDER)
        return Classification(type=DiscrepancyType.SHORT)
    if received > ordered:
        return Classification(type=DiscrepancyType.OVER)
    return Classification(type=DiscrepancyType.NONE)


def describe(classification: Classification, ordered: int, received: int) -> str:
    """Human label for review panels."""
    kind = classification.type
    if kind == DiscrepancyType.SHORT:
        return f"Short ({ordered - received} missing)"
    if kind == DiscrepancyType.OVER:
        return f"Over (+{received - ordered} extra)"
    if kind == DiscrepancyType.PENDING_BACKORDER:
        return f"Backorder ({ordered - received} expected later)"
    if kind == DiscrepancyType.DAMAGE:
        return "Damaged"
    if kind == DiscrepancyType.SUBSTITUTION:
        return "Substituted"
    return "OK"
