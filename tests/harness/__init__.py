"""Shared test helpers for deceive-relay.

    from tests.harness import FakeStream, wait_until
"""

from tests.harness.streams import FakeStream, wait_until

__all__ = ["FakeStream", "wait_until"]
