"""
Tests for window sizing.
"""

import pytest
from rtcp.congestion import WindowController


class TestWindowController:
    """Test per-round doubling and halving."""

    def test_initial_size(self):
        assert WindowController(capacity=10).size == 1
        assert WindowController(capacity=10, initial_size=4).size == 4

    def test_doubles_after_clean_round(self):
        window = WindowController(capacity=10)
        sizes = [window.on_round_complete(had_resend=False) for _ in range(5)]
        assert sizes == [2, 4, 8, 10, 10]

    def test_halves_after_resend(self):
        window = WindowController(capacity=10, initial_size=8)
        sizes = [window.on_round_complete(had_resend=True) for _ in range(5)]
        assert sizes == [4, 2, 1, 1, 1]

    def test_history(self):
        window = WindowController(capacity=4, initial_size=4)
        window.on_round_complete(had_resend=True)
        window.on_round_complete(had_resend=False)

        history = window.history
        assert [(e.size_before, e.size_after) for e in history] == [(4, 2), (2, 4)]
        assert history[0].had_resend

    @pytest.mark.parametrize("capacity,initial", [(0, 1), (4, 0), (4, 5)])
    def test_invalid_configuration(self, capacity, initial):
        with pytest.raises(ValueError):
            WindowController(capacity=capacity, initial_size=initial)
