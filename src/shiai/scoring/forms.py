"""
Forms (kata) scoring.

Each judge awards one scalar per performance. The final score is the sum
of a window of the sorted scores, never an average:

    1. Keep scores inside the valid range (5.0 to 10.0 by default)
    2. Sort ascending, drop exactly one lowest and one highest
    3. If exactly 3 remain, sum them
    4. If more than 3 remain, sum the last 3 (the highest of the middle)
    5. If fewer than 3 remain, there is no result yet

So five judges give a score between 15.0 and 30.0. Three or four valid
scores leave a middle set that is too small and the result stays unset.
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional, Union

from shiai.errors import ValidationError

DEFAULT_MIN_SCORE = Decimal("5.0")
DEFAULT_MAX_SCORE = Decimal("10.0")
DEFAULT_QUORUM = 3
COUNTED_WINDOW = 3

ScoreValue = Union[Decimal, float, int, str]


def to_decimal(value: ScoreValue) -> Decimal:
    """Convert a submitted score to Decimal, going through str for floats."""
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(f"Score '{value}' is not a number", {"value": str(value)}) from e


def validate_forms_score(
    value: ScoreValue,
    *,
    minimum: Decimal = DEFAULT_MIN_SCORE,
    maximum: Decimal = DEFAULT_MAX_SCORE,
) -> Decimal:
    """
    Check a single judge score against the allowed range.

    Returns:
        The score as a Decimal

    Raises:
        ValidationError: If the score is not numeric or outside [minimum, maximum]
    """
    score = to_decimal(value)
    if not score.is_finite() or score < minimum or score > maximum:
        raise ValidationError(
            f"Forms score must be between {minimum} and {maximum}",
            {"value": str(score), "min": str(minimum), "max": str(maximum)},
        )
    return score


@dataclass
class FormsBreakdown:
    """How a performance's submitted scores were used."""

    submitted: list[Decimal] = field(default_factory=list)
    discarded_invalid: list[Decimal] = field(default_factory=list)
    dropped_low: Optional[Decimal] = None
    dropped_high: Optional[Decimal] = None
    middle: list[Decimal] = field(default_factory=list)
    counted: list[Decimal] = field(default_factory=list)
    total: Optional[Decimal] = None

    @property
    def is_final(self) -> bool:
        return self.total is not None

    def to_dict(self) -> dict:
        return {
            "submitted": [str(s) for s in self.submitted],
            "discarded_invalid": [str(s) for s in self.discarded_invalid],
            "dropped_low": str(self.dropped_low) if self.dropped_low is not None else None,
            "dropped_high": str(self.dropped_high) if self.dropped_high is not None else None,
            "middle": [str(s) for s in self.middle],
            "counted": [str(s) for s in self.counted],
            "total": str(self.total) if self.total is not None else None,
        }


def forms_breakdown(
    scores: Iterable[ScoreValue],
    *,
    minimum: Decimal = DEFAULT_MIN_SCORE,
    maximum: Decimal = DEFAULT_MAX_SCORE,
    quorum: int = DEFAULT_QUORUM,
) -> FormsBreakdown:
    """
    Apply the forms windowing rule and report every step.

    Examples:
        >>> forms_breakdown([7.0, 7.5, 8.0, 8.2, 9.0]).total
        Decimal('23.7')
        >>> forms_breakdown([5, 6, 7, 8, 9, 9.5]).total
        Decimal('24')
        >>> forms_breakdown([7, 8, 9]).total is None
        True
    """
    submitted = [to_decimal(s) for s in scores]
    valid = [s for s in submitted if minimum <= s <= maximum]
    breakdown = FormsBreakdown(
        submitted=submitted,
        discarded_invalid=[s for s in submitted if not (minimum <= s <= maximum)],
    )

    if len(submitted) < quorum or len(valid) < quorum:
        return breakdown

    ordered = sorted(valid)
    breakdown.dropped_low = ordered[0]
    breakdown.dropped_high = ordered[-1]
    breakdown.middle = ordered[1:-1]

    if len(breakdown.middle) < COUNTED_WINDOW:
        return breakdown

    # More than 3 in the middle: keep the highest 3
    breakdown.counted = breakdown.middle[-COUNTED_WINDOW:]
    breakdown.total = sum(breakdown.counted, Decimal("0"))
    return breakdown


def select_counted_scores(
    scores: Iterable[ScoreValue],
    *,
    minimum: Decimal = DEFAULT_MIN_SCORE,
    maximum: Decimal = DEFAULT_MAX_SCORE,
    quorum: int = DEFAULT_QUORUM,
) -> Optional[list[Decimal]]:
    """The scores that make up the final total, or None while pending."""
    breakdown = forms_breakdown(scores, minimum=minimum, maximum=maximum, quorum=quorum)
    return breakdown.counted if breakdown.is_final else None


def forms_total(
    scores: Iterable[ScoreValue],
    *,
    minimum: Decimal = DEFAULT_MIN_SCORE,
    maximum: Decimal = DEFAULT_MAX_SCORE,
    quorum: int = DEFAULT_QUORUM,
) -> Optional[Decimal]:
    """Final forms score, or None when the rule cannot produce one yet."""
    return forms_breakdown(scores, minimum=minimum, maximum=maximum, quorum=quorum).total
