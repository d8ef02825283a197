from __future__ import annotations


class DetectorError(Exception):
    pass


class SubscriptionError(DetectorError):
    """Raised when the log stream subscription cannot be opened."""


class TransactionParseError(DetectorError):
    """Raised when a fetched transaction carries malformed or incomplete balance data."""

    def __init__(self, signature: str | None, message: str):
        super().__init__(f"{message} (signature={signature})")
        self.signature = signature
