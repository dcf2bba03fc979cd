"""
Level progression tables.

A level is one stage of a category: a forms round or a sparring bracket
round. Levels advance along fixed tables:

    Forms:     First Round -> Second Round (Final 8) -> Third Round (Final 4)
    Sparring:  Preliminary -> Quarterfinal -> Semifinal -> Final

A sparring bracket of more than 16 entrants needs more than one
preliminary round. The extra rounds are numbered ("Preliminary 2",
"Preliminary 3", ...) so each round is its own level.

Bronze is a side level for sparring. It is never produced by automatic
progression and never feeds anything.

These functions are used by:
- Forms rounds (validating level names, gating placements)
- Bracket progression (finding the level to generate next)
- Draw generation (naming the opening level of a fallback bracket)
"""

import math
from typing import Optional


FORMS = "forms"
SPARRING = "sparring"
DISCIPLINES = (FORMS, SPARRING)

FIRST_ROUND = "First Round"
SECOND_ROUND = "Second Round (Final 8)"
THIRD_ROUND = "Third Round (Final 4)"

PRELIMINARY = "Preliminary"
QUARTERFINAL = "Quarterfinal"
SEMIFINAL = "Semifinal"
FINAL = "Final"
BRONZE = "Bronze"

# Ordered progression for each discipline
FORMS_PROGRESSION = [FIRST_ROUND, SECOND_ROUND, THIRD_ROUND]
SPARRING_PROGRESSION = [PRELIMINARY, QUARTERFINAL, SEMIFINAL, FINAL]

PROGRESSIONS = {
    FORMS: FORMS_PROGRESSION,
    SPARRING: SPARRING_PROGRESSION,
}

# Competitors a forms round keeps when it is created from the previous one
FORMS_ROUND_CAPACITY = {
    SECOND_ROUND: 8,
    THIRD_ROUND: 4,
}

# Most winners a Quarterfinal can take
QUARTERFINAL_ENTRANTS = 8


def preliminary_level(round_number: int) -> str:
    """Name of the ``round_number``-th preliminary round (1-indexed)."""
    return PRELIMINARY if round_number <= 1 else f"{PRELIMINARY} {round_number}"


def preliminary_round(level: str) -> Optional[int]:
    """
    Round number of a preliminary level, or None for any other level.

    Examples:
        >>> preliminary_round("Preliminary")
        1
        >>> preliminary_round("Preliminary 3")
        3
        >>> preliminary_round("Quarterfinal") is None
        True
    """
    if level == PRELIMINARY:
        return 1
    prefix, _, number = level.rpartition(" ")
    if prefix == PRELIMINARY and number.isdigit() and int(number) >= 2:
        return int(number)
    return None


def known_levels(discipline: str) -> list[str]:
    """All level names a discipline accepts, including side levels."""
    levels = list(PROGRESSIONS[discipline])
    if discipline == SPARRING:
        levels.append(BRONZE)
    return levels


def is_known_level(discipline: str, level: str) -> bool:
    if discipline == SPARRING and preliminary_round(level) is not None:
        return True
    return discipline in PROGRESSIONS and level in known_levels(discipline)


def get_next_level(discipline: str, level: str) -> Optional[str]:
    """
    Get the next level in a discipline's progression.

    Args:
        discipline: 'forms' or 'sparring'
        level: Current level name

    Returns:
        Next level name, or None for the last level and for side levels

    Examples:
        >>> get_next_level("sparring", "Semifinal")
        'Final'
        >>> get_next_level("forms", "First Round")
        'Second Round (Final 8)'
        >>> get_next_level("sparring", "Bronze") is None
        True

    Every preliminary round maps to Quarterfinal here. Use
    next_sparring_level when the number of matches is known.
    """
    if discipline == SPARRING and preliminary_round(level) is not None:
        return QUARTERFINAL
    progression = PROGRESSIONS.get(discipline, [])
    try:
        idx = progression.index(level)
    except ValueError:
        return None

    if idx >= len(progression) - 1:
        return None
    return progression[idx + 1]


def get_previous_level(discipline: str, level: str) -> Optional[str]:
    """The level that feeds ``level``, or None for the first one."""
    round_number = preliminary_round(level) if discipline == SPARRING else None
    if round_number is not None:
        return preliminary_level(round_number - 1) if round_number > 1 else None
    progression = PROGRESSIONS.get(discipline, [])
    try:
        idx = progression.index(level)
    except ValueError:
        return None
    return progression[idx - 1] if idx > 0 else None


def is_terminal_level(discipline: str, level: str) -> bool:
    """True for the last level of the progression table."""
    progression = PROGRESSIONS.get(discipline, [])
    return bool(progression) and progression[-1] == level


def rounds_for_entrants(entrant_count: int) -> int:
    """
    Number of single-elimination levels needed for ``entrant_count``.

    Examples:
        >>> rounds_for_entrants(2)
        1
        >>> rounds_for_entrants(5)
        3
        >>> rounds_for_entrants(8)
        3
    """
    if entrant_count < 2:
        return 0
    return math.ceil(math.log2(entrant_count))


def level_names_for_rounds(total_rounds: int) -> list[str]:
    """
    Sparring level names for a bracket of ``total_rounds`` levels.

    Names are assigned counting back from the end: the last round is the
    Final, then Semifinal, then Quarterfinal. Earlier rounds are
    preliminary rounds, numbered from the start of the bracket.

    Examples:
        >>> level_names_for_rounds(3)
        ['Quarterfinal', 'Semifinal', 'Final']
        >>> level_names_for_rounds(1)
        ['Final']
        >>> level_names_for_rounds(5)[:2]
        ['Preliminary', 'Preliminary 2']
    """
    names = []
    for round_number in range(1, total_rounds + 1):
        rounds_from_end = total_rounds - round_number
        if rounds_from_end == 0:
            names.append(FINAL)
        elif rounds_from_end == 1:
            names.append(SEMIFINAL)
        elif rounds_from_end == 2:
            names.append(QUARTERFINAL)
        else:
            names.append(preliminary_level(round_number))
    return names


def next_sparring_level(level: str, match_count: int) -> Optional[str]:
    """
    Level fed by the winners of the ``match_count`` matches at ``level``.

    A preliminary round with more winners than a Quarterfinal takes is
    followed by another preliminary round. Other levels follow the table.

    Examples:
        >>> next_sparring_level("Preliminary", 9)
        'Preliminary 2'
        >>> next_sparring_level("Preliminary 2", 5)
        'Quarterfinal'
        >>> next_sparring_level("Final", 1) is None
        True
    """
    round_number = preliminary_round(level)
    if round_number is not None and match_count > QUARTERFINAL_ENTRANTS:
        return preliminary_level(round_number + 1)
    return get_next_level(SPARRING, level)
