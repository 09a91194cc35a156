"""Tests for the terminal prompter's selection parser."""

import pytest
from conftest import make_active, make_eligible

from azpim.models import Subscription
from azpim.prompter import format_candidate, format_subscription, parse_selection


class TestParseSelection:
    """Test parsing operator selections."""

    @pytest.mark.parametrize(
        "answer,expected",
        [
            ("1", [0]),
            ("1,3", [0, 2]),
            ("2-4", [1, 2, 3]),
            (" 3 , 1-2 ", [2, 0, 1]),
            ("1,1", [0]),
            ("all", [0, 1, 2, 3]),
            ("none", []),
            ("", []),
        ],
    )
    def test_valid(self, answer, expected):
        """Test supported selection forms."""
        assert parse_selection(answer, 4) == expected

    @pytest.mark.parametrize("answer", ["0", "5", "3-1", "x", "1-x"])
    def test_invalid(self, answer):
        """Test out-of-range or unparsable answers raise ValueError."""
        with pytest.raises(ValueError):
            parse_selection(answer, 4)


class TestFormatCandidate:
    """Test candidate labels."""

    def test_eligible(self):
        """Test an eligible role shows name and scope."""
        role = make_eligible("e1", "Reader", "/subscriptions/s1")

        assert format_candidate(role) == "Reader @ Subscription: s1"

    def test_active(self):
        """Test an active role also shows its subscription."""
        role = make_active("a1", "Owner", "s2", "Staging")

        assert format_candidate(role) == "Owner @ Subscription: s2 [Staging]"

    def test_subscription(self):
        """Test subscription labels mark favorites with a star."""
        sub = Subscription(subscription_id="s1", display_name="Production")

        assert format_subscription(sub) == "Production (s1)"
        assert format_subscription(sub, favorite=True) == "★ Production (s1)"
