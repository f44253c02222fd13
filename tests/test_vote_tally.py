"""
Tests for the vote tally.

These tests verify:
1. A single top option wins
2. A shared maximum is a TIE listing every tied option
3. Zero votes is a TIE across all options
4. No secondary tie-break is applied
"""

from trip_planner.models import PollOption, PollStatus, Vote
from trip_planner.services.tally import count_votes, tally_votes


class TestTallyVotes:
    """Classification of per-option counts."""

    def test_single_maximum_wins(self):
        """A(3) vs B(1): A wins outright."""
        result = tally_votes({1: 3, 2: 1})

        assert result.status == PollStatus.COMPLETED
        assert result.winner_id == 1
        assert result.tied_option_ids == []
        assert result.max_votes == 3
        assert result.total_votes == 4

    def test_shared_maximum_is_tie(self):
        """A(2), B(2), C(0): TIE between A and B only."""
        result = tally_votes({1: 2, 2: 2, 3: 0})

        assert result.status == PollStatus.TIE
        assert result.winner_id is None
        assert result.tied_option_ids == [1, 2]
        assert result.has_votes is True

    def test_zero_votes_ties_every_option(self):
        """Nobody voted: all options tie at zero."""
        result = tally_votes({1: 0, 2: 0, 3: 0})

        assert result.status == PollStatus.TIE
        assert result.winner_id is None
        assert result.tied_option_ids == [1, 2, 3]
        assert result.has_votes is False

    def test_single_option_without_votes_is_not_a_win(self):
        """A lone option with zero votes does not become a winner."""
        result = tally_votes({7: 0})

        assert result.status == PollStatus.TIE
        assert result.winner_id is None
        assert result.tied_option_ids == [7]

    def test_no_options_completes_without_winner(self):
        result = tally_votes({})

        assert result.status == PollStatus.COMPLETED
        assert result.winner_id is None
        assert result.tied_option_ids == []

    def test_three_way_tie_is_not_broken(self):
        """No secondary tie-break: lowest id or first option does not win."""
        result = tally_votes({5: 4, 2: 4, 9: 4, 1: 3})

        assert result.status == PollStatus.TIE
        assert result.winner_id is None
        assert result.tied_option_ids == [5, 2, 9]

    def test_deterministic(self):
        counts = {1: 1, 2: 5, 3: 5}
        assert tally_votes(counts) == tally_votes(dict(counts))


class TestCountVotes:
    """Counting votes from ORM options."""

    def test_counts_votes_per_option_in_order(self):
        options = [
            PollOption(id=10, option="Beach", votes=[Vote(user_id="a"), Vote(user_id="b")]),
            PollOption(id=11, option="Museum", votes=[]),
            PollOption(id=12, option="Hike", votes=[Vote(user_id="c")]),
        ]

        assert count_votes(options) == {10: 2, 11: 0, 12: 1}
        assert list(count_votes(options)) == [10, 11, 12]
