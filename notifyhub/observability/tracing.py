"""Receipt correlation for log lines."""

import itertools
from contextvars import ContextVar
from typing import Any

import structlog

# Process-wide receipt counter, diagnostic only
_receipts = itertools.count(1)

_receipt: ContextVar[int] = ContextVar("receipt", default=0)


def next_receipt_number() -> int:
    """Return the next receipt number."""
    return next(_receipts)


def reset_receipt_counter() -> None:
    """Restart numbering at 1. Used by tests."""
    global _receipts
    _receipts = itertools.count(1)


def get_receipt() -> int:
    """Get receipt number bound to the current context (0 if none)."""
    return _receipt.get()


class ReceiptContext:
    """Context manager binding a receipt number to logs."""

    def __init__(self, receipt: int | None = None):
        """Initialize with an optional receipt number."""
        self._receipt = receipt or next_receipt_number()
        self._token = None

    def __enter__(self) -> int:
        """Bind receipt number to the context."""
        self._token = _receipt.set(self._receipt)
        structlog.contextvars.bind_contextvars(receipt=self._receipt)
        return self._receipt

    def __exit__(self, *args: Any) -> None:
        """Restore the previous receipt binding."""
        _receipt.reset(self._token)
        previous = _receipt.get()
        if previous:
            structlog.contextvars.bind_contextvars(receipt=previous)
        else:
            structlog.contextvars.unbind_contextvars("receipt")
