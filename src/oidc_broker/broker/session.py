"""Authentication sessions.

The Broker owns the table of live sessions and drives each one through its
states:

    created -> mode_offered -> authenticating -> authenticated | denied
                     ^               |
                     +-- cancelled --+

authenticated and denied sessions may ask for modes again (next step or
retry). end_session removes a session from any state.

Every session runs at most one attempt. The attempt's work is an
asyncio.Task; is_authenticated waits on it, on the session's cancel event,
and (device modes) on a timer, so a slow session never blocks another one.
The table lock is held for lookups and state changes only, never across
network I/O.
"""

from __future__ import annotations

__all__ = [
    "Broker",
    "Session",
    "SessionState",
]

import asyncio
import json
import logging
import secrets
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Mapping

import httpx

from oidc_broker.broker.authmodes import AuthModeOffer
from oidc_broker.broker.decider import SessionPurpose, StepResult, require_auth_modes
from oidc_broker.broker.flows import AuthFlow, FlowOutcome
from oidc_broker.config import BrokerConfig
from oidc_broker.constants import (
    APP_NAME,
    IS_AUTHENTICATED_WAIT_SECONDS,
    OAUTH_CLIENT_TIMEOUT_SECONDS,
    SESSION_ID_BYTES,
)
from oidc_broker.exceptions import (
    AuthCancelledError,
    AuthInProgressError,
    BrokerError,
    InvalidPurposeError,
    NoModeAvailableError,
    UnknownModeError,
    UnknownSessionError,
    WrongStateError,
)
from oidc_broker.providers import GroupResolver, ProviderInfoer, provider_for_config
from oidc_broker.security.auth.discovery import ProviderMetadata, probe_provider
from oidc_broker.security.auth.jwt_validator import IDTokenValidator
from oidc_broker.security.challenge import (
    InvalidPayloadError,
    decrypt_challenge,
    generate_session_key,
    parse_authentication_data,
)
from oidc_broker.security.token_cache import TokenCache

_logger = logging.getLogger(f"{APP_NAME}.broker.session")

# Answers of is_authenticated
ACCESS_GRANTED = "granted"
ACCESS_DENIED = "denied"
ACCESS_CANCELLED = "cancelled"
ACCESS_AUTHENTICATING = "authenticating"


class SessionState(str, Enum):
    """Lifecycle state of a session."""

    CREATED = "created"
    MODE_OFFERED = "mode_offered"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    DENIED = "denied"
    ENDED = "ended"


# States from which modes may be (re)computed
_MODE_QUERY_STATES = frozenset(
    {
        SessionState.CREATED,
        SessionState.MODE_OFFERED,
        SessionState.AUTHENTICATED,
        SessionState.DENIED,
    }
)


@dataclass
class Session:
    """One authentication session.

    Attributes:
        id: Opaque session identifier.
        username: User being authenticated.
        language: Client language tag.
        purpose: Why the session was opened.
        encryption_key: Fernet key the client encrypts secrets with.
        state: Current lifecycle state.
        offered_modes: Mode identifiers of the last offer.
        selected_mode: Mode of the current or last attempt.
        step: Number of granted steps.
        last_result: How the last completed step ended.
        cancel: Cancel event of the current attempt.
        flow: Current attempt.
        task: Work of the current attempt, once started.
        waiting: True while an is_authenticated call is outstanding.
        metadata: Provider metadata from the last probe (None if unreachable).
        token_exists: Whether a cached token existed at the last probe.
        outcome: Outcome of the last granted step.
    """

    id: str
    username: str
    language: str
    purpose: SessionPurpose
    encryption_key: str
    state: SessionState = SessionState.CREATED
    offered_modes: list[str] = field(default_factory=list)
    selected_mode: str | None = None
    step: int = 0
    last_result: StepResult = StepResult.NONE
    cancel: asyncio.Event = field(default_factory=asyncio.Event)
    flow: AuthFlow | None = None
    task: "asyncio.Task[FlowOutcome] | None" = None
    waiting: bool = False
    metadata: ProviderMetadata | None = None
    token_exists: bool = False
    outcome: FlowOutcome | None = None


async def _settle(task: "asyncio.Task[FlowOutcome]") -> None:
    """Cancel a task and wait for it to finish, without raising."""
    if not task.done():
        task.cancel()
        await asyncio.wait({task})
    if not task.cancelled():
        # Mark the exception as retrieved
        task.exception()


class Broker:
    """Session manager exposing the broker's IPC operations.

    Usage:
        broker = Broker(config)
        session_id, key = await broker.new_session("alice", "en_US", "login")
        modes = await broker.get_authentication_modes(session_id, [{"type": "form"}])
        layout = await broker.select_authentication_mode(session_id, "password")
        access, data = await broker.is_authenticated(session_id, payload)
        await broker.end_session(session_id)
    """

    def __init__(
        self,
        config: BrokerConfig,
        cache: TokenCache | None = None,
        http_client: httpx.AsyncClient | None = None,
        provider: ProviderInfoer | None = None,
        is_authenticated_wait: float = IS_AUTHENTICATED_WAIT_SECONDS,
    ) -> None:
        """Initialize broker.

        Args:
            config: Broker configuration.
            cache: Token cache. Defaults to one at config.cache_path.
            http_client: Shared HTTP client. Created (and closed on shutdown)
                when omitted.
            provider: Provider variant. Chosen from config when omitted.
            is_authenticated_wait: Seconds a device-mode is_authenticated call
                waits before answering "authenticating".
        """
        self._config = config
        self._cache = cache or TokenCache(config.cache_path)
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=OAUTH_CLIENT_TIMEOUT_SECONDS)
        self._provider = provider or provider_for_config(config)
        self._validator = IDTokenValidator(config, self._client)
        self._groups = GroupResolver(self._provider, self._client)
        self._wait = is_authenticated_wait
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()

    @property
    def session_count(self) -> int:
        """Number of live sessions."""
        return len(self._sessions)

    @property
    def provider(self) -> ProviderInfoer:
        return self._provider

    def _lookup(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise UnknownSessionError(session_id)
        return session

    # =========================================================================
    # NewSession / EndSession
    # =========================================================================

    async def new_session(self, username: str, lang: str, purpose: str) -> tuple[str, str]:
        """Create a session.

        Returns:
            (session_id, encryption_key).

        Raises:
            InvalidPurposeError: If purpose is not a known session purpose.
        """
        try:
            session_purpose = SessionPurpose(purpose)
        except ValueError:
            raise InvalidPurposeError(f"Unknown session purpose {purpose!r}") from None
        if not username:
            raise WrongStateError("A session needs a username")

        async with self._lock:
            session_id = secrets.token_urlsafe(SESSION_ID_BYTES)
            while session_id in self._sessions:
                session_id = secrets.token_urlsafe(SESSION_ID_BYTES)
            session = Session(
                id=session_id,
                username=username,
                language=lang,
                purpose=session_purpose,
                encryption_key=generate_session_key(),
            )
            self._sessions[session_id] = session

        _logger.info(
            {
                "event": "session_created",
                "username": username,
                "purpose": session_purpose.value,
                "session_id": session_id[:8],
            }
        )
        return session_id, session.encryption_key

    async def end_session(self, session_id: str) -> None:
        """End a session, stopping any attempt in progress.

        Unknown or already ended sessions are ignored.
        """
        async with self._lock:
            session = self._sessions.pop(session_id, None)
            if session is None:
                return
            session.state = SessionState.ENDED
            session.cancel.set()
            task = session.task

        if task is not None:
            await _settle(task)
        _logger.info({"event": "session_ended", "username": session.username, "session_id": session_id[:8]})

    async def shutdown(self) -> None:
        """End every live session and release the HTTP client."""
        for session_id in list(self._sessions):
            await self.end_session(session_id)
        if self._owns_client:
            await self._client.aclose()

    # =========================================================================
    # GetAuthenticationModes / SelectAuthenticationMode
    # =========================================================================

    async def get_authentication_modes(
        self,
        session_id: str,
        supported_ui_layouts: Iterable[Mapping[str, str] | str],
    ) -> list[AuthModeOffer]:
        """Compute the modes the session may use now.

        Raises:
            UnknownSessionError: If the session is not live.
            WrongStateError: If an attempt is in progress.
            NoModeAvailableError: If no mode can be offered.
        """
        async with self._lock:
            session = self._lookup(session_id)
            if session.state not in _MODE_QUERY_STATES:
                raise WrongStateError(f"Cannot list modes while the session is {session.state.value}")

        supported_ui_layouts = list(supported_ui_layouts)
        metadata = await probe_provider(self._client, self._config.issuer)
        token_exists = await asyncio.to_thread(self._cache.exists, session.username)
        provider_reachable = metadata is not None
        endpoints = metadata.endpoints if metadata is not None else frozenset()

        offers = self._provider.current_authentication_modes_offered(
            session.purpose,
            supported_ui_layouts,
            token_exists,
            provider_reachable,
            endpoints,
            session.step,
            session.last_result,
            self._config.qr_code,
        )
        if not offers:
            # Raises with the decider's reason when it had nothing to offer
            require_auth_modes(
                session.purpose,
                token_exists,
                provider_reachable,
                endpoints,
                session.step,
                session.last_result,
                self._config.qr_code,
            )
            raise NoModeAvailableError("No available authentication mode is supported by the client")

        async with self._lock:
            self._lookup(session_id)
            if session.state not in _MODE_QUERY_STATES:
                raise WrongStateError(f"Cannot list modes while the session is {session.state.value}")
            session.metadata = metadata
            session.token_exists = token_exists
            session.offered_modes = [offer.id for offer in offers]
            session.state = SessionState.MODE_OFFERED

        _logger.info(
            {
                "event": "auth_modes_offered",
                "username": session.username,
                "modes": session.offered_modes,
                "provider_reachable": provider_reachable,
            }
        )
        return offers

    async def select_authentication_mode(self, session_id: str, mode_name: str) -> dict[str, str]:
        """Start an attempt in one of the offered modes.

        Returns:
            UI layout for the mode.

        Raises:
            UnknownSessionError: If the session is not live.
            WrongStateError: If modes were not offered or an attempt runs.
            UnknownModeError: If mode_name was not offered.
            ProviderUnreachableError: If a device code cannot be obtained.
        """
        async with self._lock:
            session = self._lookup(session_id)
            if session.state != SessionState.MODE_OFFERED:
                raise WrongStateError(f"Cannot select a mode while the session is {session.state.value}")
            if mode_name not in session.offered_modes:
                raise UnknownModeError(f"Mode {mode_name!r} was not offered")

            session.cancel = asyncio.Event()
            flow = AuthFlow(
                mode_name,
                username=session.username,
                purpose=session.purpose,
                config=self._config,
                cache=self._cache,
                provider=self._provider,
                groups=self._groups,
                validator=self._validator,
                http_client=self._client,
                metadata=session.metadata,
                token_exists=session.token_exists,
                cancel=session.cancel,
                previous=session.outcome,
            )
            session.flow = flow
            session.task = None
            session.selected_mode = mode_name
            session.state = SessionState.AUTHENTICATING

        try:
            layout = await flow.start()
        except BaseException:
            async with self._lock:
                if session.state == SessionState.AUTHENTICATING and session.flow is flow:
                    session.flow = None
                    session.state = SessionState.MODE_OFFERED
            raise

        if flow.is_device:
            async with self._lock:
                if session.flow is flow and session.state == SessionState.AUTHENTICATING:
                    session.task = asyncio.create_task(flow.run())

        _logger.info({"event": "auth_mode_selected", "username": session.username, "mode": mode_name})
        return layout

    # =========================================================================
    # IsAuthenticated / CancelIsAuthenticated
    # =========================================================================

    async def is_authenticated(self, session_id: str, authentication_data: str) -> tuple[str, str]:
        """Submit credentials or wait for the attempt to progress.

        Returns:
            (access, data): access is "granted", "denied", "cancelled" or
            "authenticating"; data is a JSON object string.

        Raises:
            UnknownSessionError: If the session is not live.
            WrongStateError: If no attempt is in progress.
            AuthInProgressError: If another is_authenticated call is waiting.
        """
        async with self._lock:
            session = self._lookup(session_id)
            if session.state != SessionState.AUTHENTICATING or session.flow is None:
                raise WrongStateError(f"No authentication in progress (session is {session.state.value})")
            if session.waiting:
                raise AuthInProgressError("Another IsAuthenticated call is in progress for this session")
            flow = session.flow
            # Device code still being requested by select_authentication_mode
            if flow.is_device and session.task is None:
                return ACCESS_AUTHENTICATING, "{}"
            session.waiting = True

            if session.task is None:
                try:
                    secret = self._decrypt_secret(session, authentication_data)
                except InvalidPayloadError as e:
                    session.waiting = False
                    return self._deny(session, e)
                session.task = asyncio.create_task(flow.run(secret))
            task = session.task

        try:
            cancel_waiter = asyncio.ensure_future(session.cancel.wait())
            try:
                await asyncio.wait(
                    {task, cancel_waiter},
                    timeout=self._wait if flow.is_device else None,
                    return_when=asyncio.FIRST_COMPLETED,
                )
            finally:
                cancel_waiter.cancel()

            if task.done() and not task.cancelled():
                async with self._lock:
                    return self._finish(session, task)
            if session.cancel.is_set() or task.done():
                await _settle(task)
                async with self._lock:
                    return self._reset_cancelled(session)
            return ACCESS_AUTHENTICATING, "{}"
        finally:
            session.waiting = False

    async def cancel_is_authenticated(self, session_id: str) -> None:
        """Cancel the attempt in progress, if any.

        Raises:
            UnknownSessionError: If the session is not live.
        """
        async with self._lock:
            session = self._lookup(session_id)
            if session.state != SessionState.AUTHENTICATING:
                return
            session.cancel.set()
            task = session.task
            if task is not None and not task.done():
                task.cancel()
            # A waiting is_authenticated call reports the cancellation itself
            if session.waiting:
                return
            session.flow = None
            session.task = None
            session.state = SessionState.MODE_OFFERED

        if task is not None:
            await _settle(task)
        _logger.info({"event": "auth_cancelled", "username": session.username})

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _decrypt_secret(session: Session, authentication_data: str) -> str:
        payload = parse_authentication_data(authentication_data)
        challenge = payload.get("challenge")
        if not isinstance(challenge, str) or not challenge:
            raise InvalidPayloadError("Authentication data has no challenge")
        return decrypt_challenge(session.encryption_key, challenge)

    def _finish(self, session: Session, task: "asyncio.Task[FlowOutcome]") -> tuple[str, str]:
        """Turn a finished attempt into an answer. Lock held by caller."""
        if session.state == SessionState.ENDED:
            return self._reset_cancelled(session)
        try:
            outcome = task.result()
        except AuthCancelledError:
            return self._reset_cancelled(session)
        except BrokerError as e:
            return self._deny(session, e)
        except Exception:
            _logger.exception({"event": "auth_flow_crashed", "username": session.username})
            session.state = SessionState.DENIED
            session.flow = None
            session.task = None
            raise

        session.outcome = outcome
        session.step += 1
        session.last_result = StepResult.AUTHENTICATED
        session.state = SessionState.AUTHENTICATED
        session.flow = None
        session.task = None
        _logger.info(
            {
                "event": "auth_granted",
                "username": session.username,
                "mode": session.selected_mode,
                "step": session.step,
            }
        )
        return ACCESS_GRANTED, json.dumps({"userinfo": outcome.userinfo})

    def _deny(self, session: Session, error: BrokerError) -> tuple[str, str]:
        # A denial inside a later step does not undo the steps already granted
        if session.step == 0:
            session.last_result = StepResult.DENIED
        session.state = SessionState.DENIED
        session.flow = None
        session.task = None
        _logger.warning(
            {
                "event": "auth_denied",
                "username": session.username,
                "mode": session.selected_mode,
                "reason": error.reason,
                "message": error.message,
            }
        )
        return ACCESS_DENIED, json.dumps({"reason": error.reason, "message": error.message})

    def _reset_cancelled(self, session: Session) -> tuple[str, str]:
        if session.state != SessionState.ENDED:
            session.state = SessionState.MODE_OFFERED
        session.flow = None
        session.task = None
        _logger.info({"event": "auth_cancelled", "username": session.username, "mode": session.selected_mode})
        return ACCESS_CANCELLED, "{}"
