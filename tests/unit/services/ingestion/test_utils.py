"""
Unit tests for services.ingestion.utils module.

Tests:
- FeedTarget validation, kinds, and author filters
- OperationToken equality semantics
"""

import pytest

from notestream.models import EventKind, FeedMode
from notestream.services.ingestion import FeedTarget, OperationToken
from tests.conftest import AUTHOR, OTHER_AUTHOR


class TestFeedTarget:
    def test_default_is_global(self):
        target = FeedTarget()
        assert target.mode == FeedMode.GLOBAL
        assert target.author_filter is None
        assert target.kinds == (EventKind.TEXT_NOTE,)
        assert not target.polls_while_focused

    def test_follows(self):
        target = FeedTarget(FeedMode.FOLLOWS, authors=(AUTHOR.upper(), AUTHOR, OTHER_AUTHOR))
        assert target.authors == (AUTHOR, OTHER_AUTHOR)
        assert target.author_filter == [AUTHOR, OTHER_AUTHOR]
        assert target.polls_while_focused
        assert target.polls

    def test_follows_without_authors_is_unrestricted(self):
        target = FeedTarget(FeedMode.FOLLOWS)
        assert target.author_filter is None
        assert not target.polls

    def test_profile_includes_reposts(self):
        target = FeedTarget.profile(AUTHOR)
        assert target.kinds == (EventKind.TEXT_NOTE, EventKind.REPOST)
        assert target.author_filter == [AUTHOR]

    def test_mode_from_string(self):
        assert FeedTarget("follows", authors=(AUTHOR,)).mode == FeedMode.FOLLOWS

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"mode": FeedMode.PROFILE},
            {"mode": FeedMode.PROFILE, "authors": (AUTHOR, OTHER_AUTHOR)},
            {"mode": FeedMode.GLOBAL, "authors": (AUTHOR,)},
            {"mode": FeedMode.FOLLOWS, "authors": ("not-hex",)},
        ],
    )
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            FeedTarget(**kwargs)

    def test_identity_distinguishes_targets(self):
        follows = (AUTHOR,)
        assert FeedTarget(FeedMode.FOLLOWS, follows, identity=AUTHOR) != FeedTarget(
            FeedMode.FOLLOWS, follows, identity=OTHER_AUTHOR
        )


class TestOperationToken:
    def test_same_generation_and_target(self):
        target = FeedTarget()
        assert OperationToken(1, target) == OperationToken(1, FeedTarget())

    def test_generation_differs(self):
        target = FeedTarget()
        assert OperationToken(1, target) != OperationToken(2, target)

    def test_target_differs(self):
        assert OperationToken(1, FeedTarget()) != OperationToken(1, FeedTarget.profile(AUTHOR))
