"""
Match result scoring for two-set challenge matches.

Turns the two set scores a player reports into a winner (or a draw), the
bonus-adjusted point totals shown on the confirmation step, and the score
string that gets stored with the match. Nothing here touches the database.
"""

from collections import namedtuple
from dataclasses import dataclass

SET_BONUS_POINTS = 2
MAX_SET_GAMES = 7

SIDE_A = "A"
SIDE_B = "B"

SetScore = namedtuple("SetScore", ["a", "b"])


class ScoreValidationError(ValueError):
    """Base class for reported scores the form must reject."""

    message = "Invalid match score"

    def __init__(self, message=None):
        if message:
            self.message = message
        super().__init__(self.message)


class MissingFirstSetError(ScoreValidationError):
    message = "Enter the first set's score"


class MissingSecondSetError(ScoreValidationError):
    message = "Enter the second set's score"


class InvalidSetScoreError(ScoreValidationError):
    def __init__(self, set_index: int):
        self.set_index = set_index
        which = "first" if set_index == 0 else "second"
        super().__init__(f"The {which} set's score is not realistic")


class FirstSetIncompleteError(ScoreValidationError):
    message = "The first set must be finished (e.g. 6-4, 7-5, 7-6)"


@dataclass(frozen=True)
class MatchOutcome:
    winner_side: str
    is_draw: bool
    score_string: str
    total_a: int
    total_b: int
    winner_id: str
    loser_id: str
    set1: SetScore
    set2: SetScore

    def to_dict(self) -> dict:
        return {
            "winner_side": self.winner_side,
            "is_draw": self.is_draw,
            "score": self.score_string,
            "total_a": self.total_a,
            "total_b": self.total_b,
            "winner_id": self.winner_id,
            "loser_id": self.loser_id,
            "set1": [self.set1.a, self.set1.b],
            "set2": [self.set2.a, self.set2.b],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MatchOutcome":
        return cls(
            winner_side=data["winner_side"],
            is_draw=bool(data["is_draw"]),
            score_string=data["score"],
            total_a=int(data["total_a"]),
            total_b=int(data["total_b"]),
            winner_id=data["winner_id"],
            loser_id=data["loser_id"],
            set1=SetScore(*data["set1"]),
            set2=SetScore(*data["set2"]),
        )


def is_valid_set_score(x: int, y: int) -> bool:
    """Sanity check for a single set.

    Deliberately permissive: unfinished sets (4-3) and non-terminal scores
    such as 6-5 pass. Only scores above 7 and a 7 reached from below 5 fail.
    """
    if x > MAX_SET_GAMES or y > MAX_SET_GAMES:
        return False
    if x == 7 and y < 5:
        return False
    if y == 7 and x < 5:
        return False
    return True


def is_set_complete(x: int, y: int) -> bool:
    """True for finished sets: 6-0 to 6-4, 7-5 and 7-6 (either order)."""
    if (x == 6 and y <= 4) or (y == 6 and x <= 4):
        return True
    if (x == 7 and y == 5) or (y == 7 and x == 5):
        return True
    if (x == 7 and y == 6) or (y == 7 and x == 6):
        return True
    return False


def parse_set_score(raw_a, raw_b):
    """Build a SetScore from two form fields.

    Returns None when either field is blank so the resolver can report the
    missing set. Non-numeric or negative values are not a score at all.
    """
    values = []
    for raw in (raw_a, raw_b):
        if raw is None or str(raw).strip() == "":
            return None
        values.append(str(raw).strip())

    try:
        a, b = int(values[0]), int(values[1])
    except ValueError:
        raise ScoreValidationError("Set scores must be whole numbers")
    if a < 0 or b < 0:
        raise ScoreValidationError("Set scores cannot be negative")
    return SetScore(a, b)


def _format_score(set1: SetScore, set2: SetScore, winner_side: str) -> str:
    if winner_side == SIDE_A:
        return f"{set1.a}-{set1.b} {set2.a}-{set2.b}"
    return f"{set1.b}-{set1.a} {set2.b}-{set2.a}"


def resolve_match_result(set1, set2, side_a_id, side_b_id) -> MatchOutcome:
    """
    Decide the result of a two-set match reported by side A.

    Each side's total is its games plus SET_BONUS_POINTS for every complete
    set it won; the higher total wins. Equal totals with one set each is a
    draw (stored with side A as winner_id), otherwise the first-set winner
    takes it. The second set may be unfinished, in which case it earns no
    bonus and no set credit.

    Raises a ScoreValidationError subclass when the input cannot be scored.
    """
    if set1 is None:
        raise MissingFirstSetError()
    if set2 is None:
        raise MissingSecondSetError()

    set1 = SetScore(*set1)
    set2 = SetScore(*set2)

    if not is_valid_set_score(set1.a, set1.b):
        raise InvalidSetScoreError(0)
    if not is_valid_set_score(set2.a, set2.b):
        raise InvalidSetScoreError(1)
    if not is_set_complete(set1.a, set1.b):
        raise FirstSetIncompleteError()

    a_won_set1 = set1.a > set1.b
    b_won_set1 = set1.b > set1.a
    set2_complete = is_set_complete(set2.a, set2.b)
    a_won_set2 = set2_complete and set2.a > set2.b
    b_won_set2 = set2_complete and set2.b > set2.a

    total_a = set1.a + set2.a
    total_b = set1.b + set2.b
    total_a += SET_BONUS_POINTS * (int(a_won_set1) + int(a_won_set2))
    total_b += SET_BONUS_POINTS * (int(b_won_set1) + int(b_won_set2))

    is_draw = False
    if total_a > total_b:
        winner_side = SIDE_A
    elif total_b > total_a:
        winner_side = SIDE_B
    else:
        sets_won_a = int(a_won_set1) + int(a_won_set2)
        sets_won_b = int(b_won_set1) + int(b_won_set2)
        if sets_won_a == 1 and sets_won_b == 1:
            is_draw = True
            winner_side = SIDE_A
        elif a_won_set1:
            winner_side = SIDE_A
        else:
            winner_side = SIDE_B

    if winner_side == SIDE_A:
        winner_id, loser_id = side_a_id, side_b_id
    else:
        winner_id, loser_id = side_b_id, side_a_id

    return MatchOutcome(
        winner_side=winner_side,
        is_draw=is_draw,
        score_string=_format_score(set1, set2, winner_side),
        total_a=total_a,
        total_b=total_b,
        winner_id=winner_id,
        loser_id=loser_id,
        set1=set1,
        set2=set2,
    )
