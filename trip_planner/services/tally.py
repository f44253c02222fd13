"""
Vote tally for poll resolution.

Pure functions: no session, no clock, no I/O. The classification is:
- exactly one option holds the maximum count -> COMPLETED, that option wins
- two or more options share the maximum -> TIE, no winner
- zero votes in total -> TIE across every option, no winner
- no options at all -> COMPLETED, no winner

There is no secondary tie-break.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from ..models import PollOption, PollStatus


@dataclass(frozen=True)
class TallyResult:
    """Outcome of counting a poll's votes."""
    counts: dict[int, int]
    status: PollStatus
    winner_id: int | None = None
    tied_option_ids: list[int] = field(default_factory=list)
    max_votes: int = 0

    @property
    def total_votes(self) -> int:
        return sum(self.counts.values())

    @property
    def is_tie(self) -> bool:
        return self.status == PollStatus.TIE

    @property
    def has_votes(self) -> bool:
        return self.total_votes > 0


def count_votes(options: Iterable[PollOption]) -> dict[int, int]:
    """Map each option id to its number of votes, keeping option order."""
    return {option.id: len(option.votes) for option in options}


def tally_votes(counts: Mapping[int, int]) -> TallyResult:
    """Classify a poll from its per-option vote counts."""
    counts = dict(counts)
    if not counts:
        return TallyResult(counts=counts, status=PollStatus.COMPLETED)

    max_votes = max(counts.values())
    top = [option_id for option_id, votes in counts.items() if votes == max_votes]

    if len(top) == 1 and max_votes > 0:
        return TallyResult(
            counts=counts,
            status=PollStatus.COMPLETED,
            winner_id=top[0],
            max_votes=max_votes,
        )

    # Either a shared maximum or nobody voted: every top option is tied
    return TallyResult(
        counts=counts,
        status=PollStatus.TIE,
        tied_option_ids=top,
        max_votes=max_votes,
    )
