from __future__ import annotations

from typing import Any, Optional


class DevnetError(RuntimeError):
    """Base class for every error raised by the devnet harness."""


class FatalSetupError(DevnetError):
    """
    The environment is broken: a role has no image, a container did not
    launch, a node never came up or the contract deployment failed.

    These abort the whole run rather than only the affected scenario.
    """


class TopologyError(FatalSetupError):
    """A topology step was called out of order or referenced a missing node."""


class MissingOptionError(FatalSetupError):
    """A node builder was asked to launch without a required option."""


class UnknownAccountError(DevnetError):
    def __init__(self, address: str) -> None:
        super().__init__(f"unknown account {address}: not created by this vault")
        self.address = address


class RPCError(DevnetError):
    """Error object returned by a JSON-RPC endpoint."""

    def __init__(self, url: str, method: str, error: Any) -> None:
        if isinstance(error, dict):
            self.code: Optional[int] = error.get("code")
            self.message: str = str(error.get("message", ""))
            self.data: Any = error.get("data")
        else:
            self.code = None
            self.message = str(error)
            self.data = None
        detail = self.message
        if self.data:
            detail = f"{detail} ({self.data})"
        super().__init__(f"RPC error from {url} calling {method}: {detail}")
        self.url = url
        self.method = method


class WaitTimeout(DevnetError):
    """A polled condition did not hold before the deadline."""


class ReceiptStatusError(DevnetError):
    def __init__(self, tx_hash: str, expected: int, got: int) -> None:
        super().__init__(f"transaction {tx_hash}: expected status {expected}, but got {got}")
        self.tx_hash = tx_hash
        self.expected = expected
        self.got = got


class SubscriptionError(DevnetError):
    """An event subscription failed while a waiter was blocked on it."""


class ContextError(DevnetError):
    pass


class DeadlineExceeded(ContextError):
    def __init__(self) -> None:
        super().__init__("context deadline exceeded")


class Cancelled(ContextError):
    def __init__(self) -> None:
        super().__init__("context canceled")
