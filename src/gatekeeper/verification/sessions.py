"""Verification sessions: one short-lived pairing code per username.

A session binds an in-game username to a chat-platform identity through a
``XXX-XXX`` code. Sessions expire by wall clock (checked lazily on every
access), allow a bounded number of validation attempts and are single-use.
All check-then-act sequences for one username run under that username's
stripe of a ``KeyedLock``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import structlog

from gatekeeper.concurrency import KeyedLock
from gatekeeper.exceptions import StorageError, VerificationTimeoutError
from gatekeeper.storage.base import VERIFIED, StorageBackend
from gatekeeper.verification.codes import codes_match, generate_validation_code

if TYPE_CHECKING:
    from gatekeeper.rewards.dispatcher import RewardDispatcher

logger = structlog.get_logger()

DEFAULT_ALLOWED_SERVER = "hub"
DEFAULT_MAX_ATTEMPTS = 4

RestrictionLiftCallback = Callable[[str, str], Awaitable[bool]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_username(username: str) -> str:
    return username.strip().lower()


@dataclass
class VerificationSession:
    username: str
    validation_code: str
    expires_at: datetime
    external_id: str | None = None
    external_name: str | None = None
    allowed_server: str = DEFAULT_ALLOWED_SERVER
    attempts: int = 0
    used: bool = False
    created_at: datetime = field(default_factory=_utcnow)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def is_live(self, now: datetime) -> bool:
        return not self.used and not self.is_expired(now)


@dataclass(frozen=True)
class SessionResult:
    """Outcome of a code request: the code and whether a new session was made."""

    code: str
    expires_at: datetime
    created: bool


class SessionRegistry:
    """In-memory registry of verification sessions keyed by normalized username."""

    def __init__(
        self,
        storage: StorageBackend,
        timeout_minutes: int = 30,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        allowed_server: str = DEFAULT_ALLOWED_SERVER,
        completion_timeout: float = 10.0,
        dispatcher: RewardDispatcher | None = None,
        code_factory: Callable[[], str] = generate_validation_code,
        clock: Callable[[], datetime] = _utcnow,
        locks: KeyedLock | None = None,
    ) -> None:
        self.storage = storage
        self.timeout_minutes = timeout_minutes
        self.max_attempts = max_attempts
        self.allowed_server = allowed_server
        self.completion_timeout = completion_timeout
        self.dispatcher = dispatcher
        self._code_factory = code_factory
        self._clock = clock
        self._locks = locks or KeyedLock()
        self._sessions: dict[str, VerificationSession] = {}
        self._restriction_lift: RestrictionLiftCallback | None = None

    def set_restriction_lift_callback(self, callback: RestrictionLiftCallback | None) -> None:
        """Hook run after a successful verification with ``(username, uuid)``."""
        self._restriction_lift = callback

    # ------------------------------------------------------------------
    # Creation / lookup
    # ------------------------------------------------------------------

    async def create_session(
        self,
        username: str,
        external_id: str | None = None,
        external_name: str | None = None,
        timeout_minutes: int | None = None,
    ) -> SessionResult:
        """Issue a code for ``username``, or return the code of its live session.

        Passing an identity seeds it on the session; for an existing session
        the identity binding is updated and the code stays the same.
        """
        key = normalize_username(username)
        async with self._locks.hold(key):
            now = self._clock()
            existing = self._sessions.get(key)
            if existing is not None and not existing.is_expired(now):
                if external_id is not None:
                    existing.external_id = external_id
                    existing.external_name = external_name
                logger.debug("verification_session_reused", username=key)
                return SessionResult(code=existing.validation_code, expires_at=existing.expires_at, created=False)

            minutes = timeout_minutes if timeout_minutes is not None else self.timeout_minutes
            session = VerificationSession(
                username=username.strip(),
                validation_code=self._code_factory(),
                expires_at=now + timedelta(minutes=minutes),
                external_id=external_id,
                external_name=external_name,
                allowed_server=self.allowed_server,
                created_at=now,
            )
            self._sessions[key] = session

        logger.info("verification_session_created", username=key, external_id=external_id, expires_at=session.expires_at)
        return SessionResult(code=session.validation_code, expires_at=session.expires_at, created=True)

    def get_session(self, username: str) -> VerificationSession | None:
        """The unexpired session for ``username``, if any."""
        session = self._sessions.get(normalize_username(username))
        if session is None or session.is_expired(self._clock()):
            return None
        return session

    def allowed_server_for(self, username: str) -> str | None:
        """Server a player is confined to by an active session, else None."""
        session = self.get_session(username)
        return session.allowed_server if session else None

    def find_by_code(self, code: str) -> VerificationSession | None:
        """Linear scan for the unexpired session whose code matches ``code``."""
        now = self._clock()
        for session in list(self._sessions.values()):
            if not session.is_expired(now) and codes_match(session.validation_code, code):
                return session
        return None

    async def bind_identity_to_session(self, username: str, external_id: str, external_name: str | None = None) -> bool:
        key = normalize_username(username)
        async with self._locks.hold(key):
            session = self._sessions.get(key)
            if session is None:
                return False
            if session.is_expired(self._clock()):
                self._sessions.pop(key, None)
                return False
            session.external_id = external_id
            session.external_name = external_name
        logger.info("verification_identity_bound", username=key, external_id=external_id)
        return True

    async def remove_session(self, username: str) -> bool:
        key = normalize_username(username)
        async with self._locks.hold(key):
            removed = self._sessions.pop(key, None) is not None
        if removed:
            logger.debug("verification_session_removed", username=key)
        return removed

    # ------------------------------------------------------------------
    # Validation / completion
    # ------------------------------------------------------------------

    async def validate_code(self, username: str, code: str) -> bool:
        """Check ``code`` against the session for ``username``.

        Checked in order: session exists, unexpired, unused, attempt limit
        not exhausted, then the code itself. Every check that reaches the
        attempt step consumes an attempt, so the attempt after the last
        allowed one fails even with the right code and discards the session.
        """
        key = normalize_username(username)
        async with self._locks.hold(key):
            session = self._sessions.get(key)
            if session is None:
                logger.debug("verification_no_session", username=key)
                return False
            if session.is_expired(self._clock()):
                self._sessions.pop(key, None)
                logger.debug("verification_session_expired", username=key)
                return False
            if session.used:
                logger.debug("verification_code_already_used", username=key)
                return False

            session.attempts += 1
            if session.attempts > self.max_attempts:
                self._sessions.pop(key, None)
                logger.info("verification_attempts_exhausted", username=key, attempts=session.attempts)
                return False

            matched = codes_match(session.validation_code, code)

        if not matched:
            logger.info("verification_code_mismatch", username=key, attempts=session.attempts)
        return matched

    async def complete_verification(self, username: str, player_uuid: str) -> bool:
        """Persist a verification and release the player.

        Returns False if there is no usable session or storage refused the
        write (the session stays usable in that case). Any exception, a
        timeout or cancellation propagates after the session has been made
        usable again. Rewards run after the session is gone and
        their failures never change the result.
        """
        key = normalize_username(username)
        async with self._locks.hold(key):
            session = self._sessions.get(key)
            if session is None:
                return False
            if session.is_expired(self._clock()):
                self._sessions.pop(key, None)
                return False
            if session.used:
                # another completion for this session is in flight
                return False
            session.used = True

        try:
            persisted = await asyncio.wait_for(self._persist(session, player_uuid), timeout=self.completion_timeout)
        except asyncio.TimeoutError as exc:
            session.used = False
            logger.error("verification_completion_timed_out", username=key, player_uuid=player_uuid)
            msg = f"Verification for {key} did not complete within {self.completion_timeout}s"
            raise VerificationTimeoutError(msg) from exc
        except StorageError:
            session.used = False
            logger.error("verification_completion_failed", username=key, player_uuid=player_uuid, exc_info=True)
            raise
        except BaseException:
            # includes cancellation
            session.used = False
            logger.error("verification_completion_aborted", username=key, player_uuid=player_uuid, exc_info=True)
            raise

        if not persisted:
            session.used = False
            logger.error("verification_state_not_saved", username=key, player_uuid=player_uuid)
            return False

        async with self._locks.hold(key):
            if self._sessions.get(key) is session:
                del self._sessions[key]
        logger.info("verification_completed", username=key, player_uuid=player_uuid, external_id=session.external_id)

        await self._lift_restrictions(session.username, player_uuid)
        if self.dispatcher is not None:
            try:
                await self.dispatcher.on_verification_completed(player_uuid, session.external_id)
            except Exception:
                logger.error("verification_rewards_failed", username=key, player_uuid=player_uuid, exc_info=True)
        return True

    async def _persist(self, session: VerificationSession, player_uuid: str) -> bool:
        if not await self.storage.update_verification_state(player_uuid, VERIFIED):
            return False
        if not await self.storage.add_to_whitelist(session.username, player_uuid):
            return False
        if session.external_id is not None:
            linked = await self.storage.link_external_identity(player_uuid, session.external_id, session.external_name)
            if not linked:
                logger.error(
                    "identity_link_failed",
                    username=session.username,
                    player_uuid=player_uuid,
                    external_id=session.external_id,
                )
        return True

    async def _lift_restrictions(self, username: str, player_uuid: str) -> None:
        if self._restriction_lift is None:
            return
        try:
            lifted = await self._restriction_lift(username, player_uuid)
        except Exception:
            logger.error("restriction_lift_failed", username=username, player_uuid=player_uuid, exc_info=True)
            return
        if not lifted:
            logger.warning("restriction_lift_refused", username=username, player_uuid=player_uuid)

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def sweep_expired(self) -> int:
        """Drop expired sessions. Only reclaims memory; expiry is enforced on access anyway."""
        now = self._clock()
        expired = [key for key, session in self._sessions.items() if session.is_expired(now)]
        for key in expired:
            self._sessions.pop(key, None)
        if expired:
            logger.debug("verification_sessions_swept", count=len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._sessions)


class SessionSweeper:
    """Background task that periodically sweeps expired sessions."""

    def __init__(
        self,
        registry: SessionRegistry,
        interval_seconds: float = 60,
        on_sweep: Callable[[], object] | None = None,
    ) -> None:
        self.registry = registry
        self.interval_seconds = interval_seconds
        self.on_sweep = on_sweep
        self._running = False

    async def start(self) -> None:
        """Sweep on an interval until ``stop()`` is called or the task is cancelled."""
        self._running = True
        logger.info("session_sweeper_started", interval_seconds=self.interval_seconds)
        while self._running:
            await asyncio.sleep(self.interval_seconds)
            self.registry.sweep_expired()
            if self.on_sweep is not None:
                self.on_sweep()

    async def stop(self) -> None:
        self._running = False
        logger.info("session_sweeper_stopped")
