"""
Unit tests for core/assessment/cancellation.py
"""
import threading
import time

import pytest

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.assessment.cancellation import CancellationToken, CancelledError, background


class TestCancellationToken:
    """Test cooperative cancellation, deadlines and parent/child tokens"""

    def test_background_is_never_cancelled(self):
        """The background token has no deadline and never raises"""
        token = background()
        assert token.cancelled is False
        assert token.remaining() is None
        token.raise_if_cancelled()

    def test_cancel_with_reason(self):
        """The cancel reason is carried on CancelledError"""
        token = CancellationToken()
        token.cancel("shutdown")
        assert token.cancelled
        with pytest.raises(CancelledError, match="shutdown"):
            token.raise_if_cancelled()

    def test_deadline(self):
        """An already-passed deadline counts as cancelled"""
        token = CancellationToken.with_timeout(0.0)
        assert token.cancelled
        assert token.reason == "deadline exceeded"

    def test_child_sees_parent_cancellation(self):
        """Cancelling the parent cancels its children with the same reason"""
        parent = CancellationToken()
        child = parent.child()
        parent.cancel("stop")
        assert child.cancelled
        assert child.reason == "stop"

    def test_child_cancel_does_not_affect_parent(self):
        """Cancellation never flows upwards"""
        parent = CancellationToken()
        parent.child().cancel()
        assert parent.cancelled is False

    def test_child_timeout_is_tighter(self):
        """A child can only shorten the parent's deadline"""
        parent = CancellationToken.with_timeout(60)
        child = parent.child(timeout=1)
        assert child.deadline < parent.deadline

    def test_wait_wakes_on_parent_cancel(self):
        """A child blocked in wait() wakes when the parent is cancelled"""
        parent = CancellationToken()
        child = parent.child()
        threading.Timer(0.05, parent.cancel).start()

        started = time.monotonic()
        assert child.wait(5) is True
        assert time.monotonic() - started < 2

    def test_wait_times_out(self):
        """wait() returns False when nothing cancels the token"""
        assert CancellationToken().wait(0.01) is False
