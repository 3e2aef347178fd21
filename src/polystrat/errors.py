"""Exception hierarchy shared across the pipeline."""

from __future__ import annotations


class PolystratError(Exception):
    """Base class for all polystrat errors."""


class ConfigurationError(PolystratError):
    """Invalid or missing configuration. Strategy must not start."""


class MalformedMarketError(PolystratError):
    """A single upstream market record could not be normalized.

    Args:
        field: 파싱에 실패한 필드 이름.
        detail: 사람이 읽을 수 있는 원인.
    """

    def __init__(self, field: str, detail: str):
        super().__init__(f"{field}: {detail}")
        self.field = field
        self.detail = detail


class InvalidTransitionError(PolystratError):
    """Opportunity status edge not allowed by the lifecycle state machine."""


class AdmissionError(PolystratError):
    """Opportunity rejected before execution (queue full, duplicate in flight, budget)."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class GatewayError(PolystratError):
    """Order gateway rejected a call (order rejected, insufficient funds)."""


class TransientGatewayError(GatewayError):
    """Timeout, rate limit or connection reset. Safe to retry."""
