# csilvm/provisioner/_retry.py - Polling retry policy
#
# This file is part of the csilvm project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Fixed-interval retry policy with a pluggable clock.
"""
import time


class SystemClock:
    """Clock backed by ``time.monotonic()`` and ``time.sleep()``."""

    def monotonic(self):
        return time.monotonic()

    def sleep(self, seconds):
        time.sleep(seconds)


class VirtualClock:
    """
    Clock that advances instantly when asked to sleep.
    """

    def __init__(self, start=0.0):
        self.now = start
        self.sleeps = 0

    def monotonic(self):
        return self.now

    def sleep(self, seconds):
        self.now += seconds
        self.sleeps += 1


class RetryPolicy:
    """
    Retry an operation up to ``max_attempts`` times, waiting ``interval``
    seconds before each attempt.

    Iterating a ``RetryPolicy`` yields the attempt number (starting at
    zero) after sleeping on the policy's clock.
    """

    def __init__(self, interval=1.0, max_attempts=1, clock=None):
        if interval < 0:
            raise ValueError("interval must be non-negative")
        if max_attempts < 0:
            raise ValueError("max_attempts must be non-negative")
        self.interval = interval
        self.max_attempts = max_attempts
        self.clock = clock or SystemClock()

    def __repr__(self):
        return (
            f"RetryPolicy(interval={self.interval}, "
            f"max_attempts={self.max_attempts})"
        )

    @classmethod
    def from_seconds(cls, seconds, clock=None):
        """
        Return a policy polling once per second for ``seconds`` seconds.
        """
        return cls(interval=1.0, max_attempts=int(seconds), clock=clock)

    def __iter__(self):
        for attempt in range(self.max_attempts):
            self.clock.sleep(self.interval)
            yield attempt
