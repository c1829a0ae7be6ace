"""
Tests for the rule-based ContentModerator.
"""

import pytest

from adroom.safety.moderation import MAX_CONTENT_LENGTH, ContentModerator


@pytest.fixture
def moderator():
    return ContentModerator()


class TestContentModerator:
    def test_clean_copy_is_safe(self, moderator):
        result = moderator.analyze("Fresh summer styles are here. Shop the new drop today.")
        assert result.is_safe is True
        assert result.issues == []
        assert result.suggestions == []

    def test_too_long(self, moderator):
        result = moderator.analyze("a" * (MAX_CONTENT_LENGTH + 1))
        assert result.is_safe is False
        assert result.issues == ["Content is too long for optimal engagement."]

    def test_exactly_max_length_is_fine(self, moderator):
        assert moderator.analyze("a" * MAX_CONTENT_LENGTH).is_safe is True

    def test_prohibited_words_listed(self, moderator):
        result = moderator.analyze("We GUARANTEE you will get rich")
        assert result.is_safe is False
        assert result.issues == [
            "Contains potential policy violation words: guarantee, rich"
        ]

    def test_engagement_bait(self, moderator):
        result = moderator.analyze("Share this with your friends!")
        assert "Potential engagement bait detected." in result.issues

    def test_issues_accumulate(self, moderator):
        result = moderator.analyze("Like this post for a cure " + "x" * 300)
        assert len(result.issues) == 3
        assert len(result.suggestions) == 3

    def test_custom_rules(self):
        moderator = ContentModerator(max_length=10, prohibited_words=("free",))
        result = moderator.analyze("Free gift inside")
        assert len(result.issues) == 2
