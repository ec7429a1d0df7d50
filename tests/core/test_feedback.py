"""Tests for the scoped feedback switch."""

import pytest

from treesync.core.feedback import FeedbackSwitch


class TestFeedbackSwitch:
    """The switch is always restored to its previous value."""

    def test_disabled_inside_scope(self):
        switch = FeedbackSwitch()
        with switch.suppressed():
            assert switch.disabled
        assert not switch.disabled

    def test_restored_after_exception(self):
        switch = FeedbackSwitch()
        with pytest.raises(RuntimeError):
            with switch.suppressed():
                raise RuntimeError("evaluator failed")
        assert not switch.disabled

    def test_nested_scopes_restore_outer_value(self):
        switch = FeedbackSwitch()
        with switch.suppressed():
            with switch.suppressed():
                assert switch.disabled
            assert switch.disabled
        assert not switch.disabled

    def test_initially_disabled_stays_disabled(self):
        switch = FeedbackSwitch(disabled=True)
        with switch.suppressed():
            pass
        assert switch.disabled

    def test_early_return_restores(self):
        switch = FeedbackSwitch()

        def skip():
            with switch.suppressed():
                return "skipped"

        assert skip() == "skipped"
        assert not switch.disabled
