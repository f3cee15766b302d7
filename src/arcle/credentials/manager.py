"""
Credential lifecycle manager.

The only writer of ``Credential`` state. Consumers call ``resolve_credential``
at the start of an operation and keep that snapshot for its duration; a
refresh never mutates a snapshot, it publishes a new one.

Resolution order is cache, then the durable store, then a refresh. A proactive
check refreshes any token expiring within the configured horizon, and
``call_with_auth`` gives every provider call one refresh-and-retry when the
provider rejects the token. A second rejection ends the session.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from arcle.core.circle_client import CircleClient
from arcle.core.config import Config
from arcle.core.exceptions import (
    AuthExpiredError,
    CredentialUnavailableError,
    NetworkError,
    RefreshFailedError,
    SessionExpiredError,
    WalletError,
)
from arcle.core.logging import get_logger
from arcle.core.types import Credential
from arcle.credentials.store import CredentialStore
from arcle.credentials.tokens import build_credential
from arcle.monitoring.adaptive import AdaptiveMonitor, PollConfig

T = TypeVar("T")

RefreshListener = Callable[[Credential], Any]
SessionExpiredListener = Callable[[str], Any]

PROACTIVE_REFRESH_KEY = ("credentials", "refresh")


class CredentialManager:
    """Resolves, refreshes and invalidates per-owner provider credentials."""

    def __init__(
        self,
        config: Config,
        circle: CircleClient,
        store: CredentialStore,
        monitor: AdaptiveMonitor | None = None,
    ) -> None:
        self._config = config
        self._circle = circle
        self._store = store
        self._monitor = monitor
        self._cache: dict[str, Credential] = {}
        self._refreshing: dict[str, asyncio.Task[Credential]] = {}
        self._refresh_listeners: list[RefreshListener] = []
        self._expired_listeners: list[SessionExpiredListener] = []
        self._logger = get_logger("credentials")

    @property
    def store(self) -> CredentialStore:
        return self._store

    # ==================== Listeners ====================

    def add_refresh_listener(self, listener: RefreshListener) -> None:
        """Called with every newly published credential."""
        self._refresh_listeners.append(listener)

    def add_session_expired_listener(self, listener: SessionExpiredListener) -> None:
        """Called with the owner id when that owner's session is invalidated."""
        self._expired_listeners.append(listener)

    async def _notify(self, listeners: list[Callable[..., Any]], *args: Any) -> None:
        for listener in listeners:
            try:
                result = listener(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self._logger.error(f"Credential listener failed: {e}", exc_info=True)

    # ==================== Sign-in ====================

    async def sign_in(self, owner_id: str, device_id: str | None = None) -> Credential:
        """Issue a fresh token for ``owner_id`` and make it the current credential."""
        token = await self._circle.create_user_token(owner_id)
        credential = build_credential(
            owner_id, token, device_id=device_id, fallback_lifetime=self._config.token_lifetime
        )
        await self._publish(credential)
        self._logger.info(f"Signed in owner {owner_id}")
        return credential

    async def set_credential(self, credential: Credential) -> None:
        """Adopt a credential obtained by the host application's own sign-in flow."""
        await self._publish(credential)

    async def _publish(self, credential: Credential) -> None:
        self._cache[credential.owner_id] = credential
        await self._store.save(credential)
        await self._notify(self._refresh_listeners, credential)

    # ==================== Resolution ====================

    def cached(self, owner_id: str) -> Credential | None:
        return self._cache.get(owner_id)

    async def resolve_credential(self, owner_id: str) -> Credential:
        """
        Current credential for ``owner_id``.

        Raises:
            CredentialUnavailableError: Nothing cached, stored or refreshable
            RefreshFailedError: The credential expired and refreshing it failed
        """
        cached = self._cache.get(owner_id)
        if cached is not None and not cached.is_expired():
            return cached

        stored = await self._store.load(owner_id)
        if stored is not None and not stored.is_expired():
            self._cache[owner_id] = stored
            return stored

        if cached is None and stored is None:
            raise CredentialUnavailableError(
                f"No credential available for owner {owner_id}", owner_id=owner_id
            )
        self._logger.info(f"Credential for owner {owner_id} expired; refreshing")
        return await self.refresh(owner_id)

    async def refresh(self, owner_id: str) -> Credential:
        """
        Refresh the credential for ``owner_id``.

        Concurrent callers share a single in-flight refresh.

        Raises:
            CredentialUnavailableError: There is nothing to refresh from
            RefreshFailedError: The provider refused both refresh paths
        """
        task = self._refreshing.get(owner_id)
        if task is None:
            task = asyncio.get_running_loop().create_task(
                self._do_refresh(owner_id), name=f"arcle-refresh:{owner_id}"
            )
            self._refreshing[owner_id] = task
            task.add_done_callback(lambda _: self._refreshing.pop(owner_id, None))
        return await asyncio.shield(task)

    async def _do_refresh(self, owner_id: str) -> Credential:
        current = self._cache.get(owner_id) or await self._store.load(owner_id)
        if current is None:
            raise CredentialUnavailableError(
                f"No credential to refresh for owner {owner_id}", owner_id=owner_id
            )
        try:
            try:
                token = await self._circle.refresh_user_token(current)
            except AuthExpiredError as e:
                self._logger.warning(
                    f"Refresh token rejected for owner {owner_id} ({e.message}); "
                    "issuing a new user token"
                )
                token = await self._circle.create_user_token(owner_id)
        except (AuthExpiredError, WalletError, NetworkError) as e:
            self._logger.error(f"Credential refresh failed for owner {owner_id}: {e}")
            raise RefreshFailedError(
                f"Could not refresh credential: {e.message}", owner_id=owner_id
            ) from e

        credential = build_credential(
            owner_id, token, previous=current, fallback_lifetime=self._config.token_lifetime
        )
        await self._publish(credential)
        self._logger.info(f"Refreshed credential for owner {owner_id}")
        return credential

    # ==================== Reactive path ====================

    async def call_with_auth(
        self, owner_id: str, operation: Callable[[Credential], Awaitable[T]]
    ) -> T:
        """
        Run ``operation`` with the current credential.

        On an authorization rejection the credential is refreshed once and the
        operation retried once. A second rejection, or a failed refresh, ends
        the session.

        Raises:
            SessionExpiredError: The session could not be recovered
            CredentialUnavailableError: The owner never signed in
        """
        try:
            credential = await self.resolve_credential(owner_id)
        except RefreshFailedError as e:
            await self.expire_session(owner_id)
            raise SessionExpiredError(str(e.message), owner_id=owner_id) from e

        try:
            return await operation(credential)
        except AuthExpiredError as e:
            self._logger.warning(f"Provider rejected credential for owner {owner_id}: {e}")

        try:
            credential = await self.refresh(owner_id)
        except (RefreshFailedError, CredentialUnavailableError) as e:
            await self.expire_session(owner_id)
            raise SessionExpiredError(
                "Session expired and could not be refreshed", owner_id=owner_id
            ) from e

        try:
            return await operation(credential)
        except AuthExpiredError as e:
            await self.expire_session(owner_id)
            raise SessionExpiredError(
                "Provider rejected the refreshed credential", owner_id=owner_id
            ) from e

    async def expire_session(self, owner_id: str) -> None:
        """Forget the owner's credential and wallet state and notify listeners."""
        self._logger.error(f"Session expired for owner {owner_id}; clearing local state")
        self._cache.pop(owner_id, None)
        await self._store.clear(owner_id)
        await self._notify(self._expired_listeners, owner_id)

    # ==================== Proactive path ====================

    async def check_expiring(self) -> list[str]:
        """
        Refresh every cached credential expiring within the horizon.

        Returns:
            Owner ids whose credential was refreshed.
        """
        refreshed: list[str] = []
        horizon = self._config.token_refresh_horizon
        for owner_id, credential in list(self._cache.items()):
            if not credential.expires_within(horizon):
                continue
            try:
                await self.refresh(owner_id)
            except (RefreshFailedError, CredentialUnavailableError) as e:
                # Already logged at ERROR; the reactive path will end the session
                self._logger.warning(f"Proactive refresh for owner {owner_id} failed: {e}")
                continue
            refreshed.append(owner_id)
        return refreshed

    def start_proactive_refresh(self) -> None:
        if self._monitor is None:
            raise RuntimeError("CredentialManager was built without a monitor")
        interval = self._config.token_refresh_interval
        self._monitor.start(
            PROACTIVE_REFRESH_KEY,
            self.check_expiring,
            PollConfig(
                active_interval=interval,
                idle_interval=interval,
                pause_after_idle=None,
                immediate=False,
            ),
        )

    def stop_proactive_refresh(self) -> None:
        if self._monitor is not None:
            self._monitor.stop(PROACTIVE_REFRESH_KEY)
