"""Pending OAuth flows.

A flow is a (provider, state) correlation token created when the user
starts a browser login and consumed by the matching callback. Rules:
- at most one pending flow per provider (begin replaces the previous one)
- a flow is consumed exactly once
- flows older than the TTL are discarded on every access

Thread-safe.
"""

from __future__ import annotations

__all__ = [
    "PendingAuthFlow",
    "PendingAuthStore",
]

import logging
import secrets
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from proxypal.constants import APP_NAME, OAUTH_PENDING_TTL_SECONDS
from proxypal.exceptions import OAuthFlowError

_logger = logging.getLogger(f"{APP_NAME}.manager.oauth")


@dataclass(frozen=True)
class PendingAuthFlow:
    """One pending browser login.

    Attributes:
        provider: Provider being authenticated.
        state: Opaque correlation string echoed by the callback.
        created_at: Clock reading when the flow began.
        expires_at: Clock reading after which the flow is discarded.
    """

    provider: str
    state: str
    created_at: float
    expires_at: float


class PendingAuthStore:
    """Holds at most one pending flow per provider, with expiry."""

    def __init__(
        self,
        ttl_seconds: float = OAUTH_PENDING_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the store.

        Args:
            ttl_seconds: Lifetime of an unconsumed flow.
            clock: Monotonic time source (injectable for tests).
        """
        self._ttl = ttl_seconds
        self._clock = clock
        self._flows: dict[str, PendingAuthFlow] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            self._purge_locked()
            return len(self._flows)

    def begin(self, provider: str, state: str | None = None) -> PendingAuthFlow:
        """Start a flow, replacing any pending flow for the provider.

        Args:
            provider: Provider name.
            state: Correlation string; generated when omitted.

        Returns:
            The new pending flow.
        """
        now = self._clock()
        flow = PendingAuthFlow(
            provider=provider,
            state=state or secrets.token_urlsafe(24),
            created_at=now,
            expires_at=now + self._ttl,
        )
        with self._lock:
            self._purge_locked()
            replaced = self._flows.get(provider)
            self._flows[provider] = flow

        if replaced is not None:
            _logger.debug(
                {
                    "event": "oauth_flow_replaced",
                    "message": f"Replaced pending OAuth flow for {provider}",
                    "details": {"provider": provider},
                }
            )
        return flow

    def get(self, provider: str) -> PendingAuthFlow | None:
        """Return the live pending flow for a provider, if any."""
        with self._lock:
            self._purge_locked()
            return self._flows.get(provider)

    def consume(self, provider: str, state: str) -> PendingAuthFlow:
        """Consume the pending flow matching (provider, state).

        Raises:
            OAuthFlowError: No live flow for the provider, or state mismatch.
                A mismatch leaves the pending flow in place.
        """
        with self._lock:
            self._purge_locked()
            flow = self._flows.get(provider)
            if flow is None:
                raise OAuthFlowError(f"No pending OAuth flow for {provider} (expired or never started)")
            if not secrets.compare_digest(flow.state, state):
                raise OAuthFlowError(f"OAuth state mismatch for {provider}")
            del self._flows[provider]
            return flow

    def purge_expired(self) -> int:
        """Discard expired flows. Returns the number removed."""
        with self._lock:
            removed = self._purge_locked()
        if removed:
            _logger.debug(
                {
                    "event": "oauth_flows_expired",
                    "message": f"Discarded {removed} expired OAuth flow(s)",
                }
            )
        return removed

    def _purge_locked(self) -> int:
        now = self._clock()
        expired = [provider for provider, flow in self._flows.items() if flow.expires_at <= now]
        for provider in expired:
            del self._flows[provider]
        return len(expired)
