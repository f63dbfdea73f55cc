"""
Platform NFC driver interface used by the tag write session
A driver exposes a reader session and tag objects; every operation reports
its result through a completion callback, the way reader hardware does.
"""

import logging
from enum import Enum
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


class NFCError(Exception):
    """Base class for NFC driver errors."""
    pass


class ReaderNotFoundError(NFCError):
    """No NFC reader found."""
    pass


class TagIOError(NFCError):
    """Reading from or writing to the tag failed."""
    pass


class NDEFStatus(Enum):
    NOT_SUPPORTED = "not_supported"
    READ_ONLY = "read_only"
    READ_WRITE = "read_write"


class SessionDelegate:
    """Receives reader session events. TagWriteSession implements this."""

    def session_did_become_active(self, session: "ReaderSession"):
        pass

    def session_did_detect_tags(self, session: "ReaderSession", tags: List["Tag"]):
        pass

    def session_did_invalidate(self, session: "ReaderSession", error: Optional[Exception]):
        pass


class Tag:
    """A tag presented to the reader."""

    def query_ndef_status(self, completion: Callable[[NDEFStatus, int, Optional[Exception]], None]):
        """Report (status, capacity in bytes, error)"""
        raise NotImplementedError

    def write_ndef(self, message: bytes, completion: Callable[[Optional[Exception]], None]):
        """Write an encoded NDEF message and report the error, if any"""
        raise NotImplementedError


class ReaderSession:
    """A tag discovery session on one reader.

    invalidate_after_first_read=False keeps the session open after the first
    detection so polling can be restarted when several tags are presented.
    """

    def __init__(self, delegate: SessionDelegate, invalidate_after_first_read: bool = False):
        self.delegate = delegate
        self.invalidate_after_first_read = invalidate_after_first_read
        self.alert_message = ""

    def begin(self):
        raise NotImplementedError

    def restart_polling(self):
        raise NotImplementedError

    def connect(self, tag: Tag, completion: Callable[[Optional[Exception]], None]):
        raise NotImplementedError

    def invalidate(self):
        raise NotImplementedError


class MockTag(Tag):
    """Read/write tag that prints what would be written."""

    def __init__(self, capacity: int = 492):
        self.capacity = capacity
        self.written = None

    def query_ndef_status(self, completion):
        completion(NDEFStatus.READ_WRITE, self.capacity, None)

    def write_ndef(self, message, completion):
        if len(message) > self.capacity:
            completion(TagIOError(f"Message of {len(message)} bytes exceeds tag capacity {self.capacity}"))
            return
        self.written = message
        print(f"[MockNFC] Would write {len(message)} bytes: {message.hex()}")
        completion(None)


class MockReaderSession(ReaderSession):
    """Hardware-free reader session: a single MockTag is presented on begin()."""

    def __init__(self, delegate, invalidate_after_first_read=False, tag: Optional[MockTag] = None):
        super().__init__(delegate, invalidate_after_first_read)
        self.tag = tag or MockTag()
        self.is_active = False

    def begin(self):
        self.is_active = True
        self.delegate.session_did_become_active(self)
        self.delegate.session_did_detect_tags(self, [self.tag])

    def restart_polling(self):
        if self.is_active:
            self.delegate.session_did_detect_tags(self, [self.tag])

    def connect(self, tag, completion):
        completion(None)

    def invalidate(self):
        if not self.is_active:
            return
        self.is_active = False
        logger.debug("Mock session invalidated")
        self.delegate.session_did_invalidate(self, None)
