"""
Tag write session for contact tokens
Drives one NDEF write through the reader session callbacks:
begin -> detect tag -> connect -> query NDEF status -> write -> invalidate
"""

import functools
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional
from urllib.parse import urlsplit

import ndef

from nfc_driver import NDEFStatus, ReaderSession, SessionDelegate, Tag

DEFAULT_REPOLL_DELAY = 0.5  # seconds

SCAN_PROMPT = "Hold your device near the NFC tag."
TOO_MANY_TAGS = "More than one tag detected. Please present only one."
WRITE_SUCCEEDED = "NFC tag written successfully."


class SessionState(Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    TAGS_DETECTED = "tags_detected"
    CONNECTING = "connecting"
    QUERYING_CAPABILITY = "querying_capability"
    WRITING = "writing"
    DONE = "done"


class FailureReason(Enum):
    CONNECT_FAILED = "connect_failed"
    CAPABILITY_QUERY_FAILED = "capability_query_failed"
    UNSUPPORTED_TAG = "unsupported_tag"
    READ_ONLY_TAG = "read_only_tag"
    INVALID_PAYLOAD = "invalid_payload"
    WRITE_FAILED = "write_failed"
    CANCELLED = "cancelled"


FAILURE_MESSAGES = {
    FailureReason.CONNECT_FAILED: "Failed to connect to tag.",
    FailureReason.CAPABILITY_QUERY_FAILED: "Failed to read tag.",
    FailureReason.UNSUPPORTED_TAG: "Tag does not support NDEF.",
    FailureReason.READ_ONLY_TAG: "Tag is read-only.",
    FailureReason.INVALID_PAYLOAD: "Invalid payload.",
    FailureReason.WRITE_FAILED: "Failed to write tag.",
    FailureReason.CANCELLED: "NFC session ended before the tag was written.",
}


class SessionBusyError(RuntimeError):
    """scan() was called while a write is already in progress."""
    pass


@dataclass(frozen=True)
class WriteOutcome:
    success: bool
    message: str
    reason: Optional[FailureReason] = None


def build_uri_message(token: str) -> bytes:
    """Encode the token as a single well-known URI record.

    Raises ValueError when the token cannot be carried as a URI record.
    """
    parts = urlsplit(token)
    if not parts.scheme or not (parts.netloc or parts.path) or any(c.isspace() for c in token):
        raise ValueError(f"Not an absolute URI: {token!r}")
    try:
        return b"".join(ndef.message_encoder([ndef.UriRecord(token)]))
    except (ndef.EncodeError, TypeError, ValueError) as e:
        raise ValueError(f"Cannot encode URI record: {e}") from e


class TagWriteSession(SessionDelegate):
    """Writes one token to one tag per scan().

    session_factory is called as session_factory(delegate,
    invalidate_after_first_read=False) and must return a ReaderSession.
    Driver callbacks may arrive on any thread; transitions are serialized
    with a re-entrant lock so drivers that complete synchronously work too.
    """

    def __init__(self, session_factory: Callable[..., ReaderSession],
                 logger: Optional[logging.Logger] = None,
                 status_callback: Optional[Callable[[str], None]] = None,
                 on_complete: Optional[Callable[[WriteOutcome], None]] = None,
                 repoll_delay: float = DEFAULT_REPOLL_DELAY,
                 timer_factory: Callable = threading.Timer):
        self.session_factory = session_factory
        self.logger = logger or logging.getLogger(__name__)
        self.status_callback = status_callback
        self.on_complete = on_complete
        self.repoll_delay = repoll_delay
        self.timer_factory = timer_factory
        self.outcome: Optional[WriteOutcome] = None

        self._lock = threading.RLock()
        self._state = SessionState.IDLE
        self._token: Optional[str] = None
        self._session: Optional[ReaderSession] = None
        self._repoll_timer = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def token(self) -> Optional[str]:
        return self._token

    @property
    def in_progress(self) -> bool:
        return self._state not in (SessionState.IDLE, SessionState.DONE)

    def scan(self, token: str):
        """Open a reader session and write token to the first single tag presented.

        Raises ValueError for an empty token and SessionBusyError when a write
        is already in progress. Errors from opening the reader propagate and
        leave the session idle.
        """
        if not token:
            self.logger.error("Refusing to start an NFC session with an empty token")
            raise ValueError("Token is empty")

        with self._lock:
            if self.in_progress:
                raise SessionBusyError(f"NFC write already in progress ({self._state.value})")

            self.outcome = None
            self._token = token
            self._state = SessionState.SCANNING
            try:
                session = self.session_factory(self, invalidate_after_first_read=False)
                self._session = session
                self._set_alert(session, SCAN_PROMPT)
                self.logger.info("Starting NFC session for token of %d characters", len(token))
                session.begin()
            except Exception:
                self.logger.exception("Failed to start NFC session")
                session = self._session
                self._reset()
                if session is not None:
                    # begin() may have registered with the reader before failing
                    try:
                        session.invalidate()
                    except Exception as e:
                        self.logger.warning("Invalidating half-started NFC session failed: %s", e)
                raise

    def cancel(self):
        """Stop the current write, if any. The outcome is CANCELLED."""
        with self._lock:
            if self._session is None or not self.in_progress:
                return
            self._fail(FailureReason.CANCELLED, "cancelled by caller")

    # SessionDelegate

    def session_did_become_active(self, session):
        with self._lock:
            if not self._is_current(session):
                return
            self.logger.debug("NFC session became active")

    def session_did_detect_tags(self, session, tags: List[Tag]):
        with self._lock:
            if not self._is_current(session) or self._state is not SessionState.SCANNING:
                self.logger.debug("Ignoring tag detection in state %s", self._state.value)
                return

            if len(tags) != 1:
                self.logger.warning("%d tags detected, restarting polling", len(tags))
                if tags:
                    self._set_alert(session, TOO_MANY_TAGS)
                self._schedule_repoll(session)
                return

            tag = tags[0]
            self._state = SessionState.TAGS_DETECTED
            self.logger.debug("Tag detected: %s", tag)

            self._state = SessionState.CONNECTING
            session.connect(tag, functools.partial(self._on_connected, session, tag))

    def session_did_invalidate(self, session, error: Optional[Exception]):
        with self._lock:
            if not self._is_current(session):
                return
            # The platform ended the session on its own (user cancel, timeout, reader lost)
            self._fail(FailureReason.CANCELLED, error, invalidate=False)

    # Completion handlers

    def _on_connected(self, session, tag, error):
        with self._lock:
            if not self._is_current(session):
                return
            if error:
                self._fail(FailureReason.CONNECT_FAILED, error)
                return

            self._state = SessionState.QUERYING_CAPABILITY
            tag.query_ndef_status(functools.partial(self._on_ndef_status, session, tag))

    def _on_ndef_status(self, session, tag, status, capacity, error):
        with self._lock:
            if not self._is_current(session):
                return
            if error:
                self._fail(FailureReason.CAPABILITY_QUERY_FAILED, error)
                return

            if status is NDEFStatus.READ_ONLY:
                self._fail(FailureReason.READ_ONLY_TAG, "tag is read-only")
                return
            if status is not NDEFStatus.READ_WRITE:
                self._fail(FailureReason.UNSUPPORTED_TAG, f"tag NDEF status is {status}")
                return

            try:
                message = build_uri_message(self._token)
            except ValueError as e:
                self._fail(FailureReason.INVALID_PAYLOAD, e)
                return

            self.logger.debug("Writing %d byte NDEF message to tag with capacity %s", len(message), capacity)
            self._state = SessionState.WRITING
            tag.write_ndef(message, functools.partial(self._on_written, session))

    def _on_written(self, session, error):
        with self._lock:
            if not self._is_current(session):
                return
            if error:
                self._fail(FailureReason.WRITE_FAILED, error)
                return
            self.logger.info("Successfully wrote NFC tag")
            self._finish(WriteOutcome(success=True, message=WRITE_SUCCEEDED))

    # Internals

    def _is_current(self, session) -> bool:
        return session is not None and session is self._session and self._state is not SessionState.DONE

    def _set_alert(self, session, message):
        session.alert_message = message
        if self.status_callback:
            self.status_callback(message)

    def _schedule_repoll(self, session):
        if self._repoll_timer is not None:
            return
        timer = self.timer_factory(self.repoll_delay, functools.partial(self._repoll, session))
        timer.daemon = True
        self._repoll_timer = timer
        timer.start()

    def _repoll(self, session):
        with self._lock:
            self._repoll_timer = None
            if not self._is_current(session) or self._state is not SessionState.SCANNING:
                return
            self.logger.debug("Restarting polling")
            session.restart_polling()

    def _cancel_repoll(self):
        if self._repoll_timer is not None:
            self._repoll_timer.cancel()
            self._repoll_timer = None

    def _fail(self, reason: FailureReason, error, invalidate: bool = True):
        message = FAILURE_MESSAGES[reason]
        self.logger.error("NFC write failed: %s (%s): %s", message, reason.value, error,
                          extra={"failure_reason": reason.value, "platform_error": str(error)})
        self._finish(WriteOutcome(success=False, message=message, reason=reason), invalidate=invalidate)

    def _finish(self, outcome: WriteOutcome, invalidate: bool = True):
        session = self._session
        self._cancel_repoll()
        self._state = SessionState.DONE
        self._session = None
        self._token = None
        self.outcome = outcome

        self._set_alert(session, outcome.message)
        if invalidate:
            session.invalidate()

        if self.on_complete:
            self.on_complete(outcome)

    def _reset(self):
        self._cancel_repoll()
        self._state = SessionState.IDLE
        self._session = None
        self._token = None
