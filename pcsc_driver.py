"""
PC/SC reader session for ACS ACR1252 and compatible USB NFC readers
Writes NDEF messages to NTAG213/215/216 tags page by page
Based on VladoPortos's ACR1252 implementation: https://github.com/VladoPortos/python-nfc-read-write-acr1252
"""

import logging
import time
from typing import Optional

from smartcard.CardConnection import CardConnection
from smartcard.CardMonitoring import CardMonitor, CardObserver
from smartcard.Exceptions import SmartcardException
from smartcard.System import readers

from nfc_driver import NDEFStatus, ReaderNotFoundError, ReaderSession, Tag, TagIOError

logger = logging.getLogger(__name__)

PREFERRED_READER = "ACR1252"

FIRST_DATA_PAGE = 4
CC_PAGE = 3
CC_MAGIC = 0xE1
CC_ACCESS_READ_WRITE = 0x00
CC_ACCESS_READ_ONLY = 0x0F

NDEF_TLV = 0x03
TERMINATOR_TLV = 0xFE


def select_reader(preferred: str = PREFERRED_READER):
    """Pick the preferred reader, or the first one available"""
    available_readers = readers()
    if not available_readers:
        raise ReaderNotFoundError("No PC/SC reader found. Is pcscd running?")

    for reader in available_readers:
        if preferred and preferred in str(reader):
            return reader
    return available_readers[0]


def wrap_ndef_tlv(message: bytes) -> bytes:
    """Wrap an NDEF message in a TLV block padded to the 4-byte page size"""
    length = len(message)
    if length < 0xFF:
        tlv = bytes([NDEF_TLV, length]) + message + bytes([TERMINATOR_TLV])
    else:
        tlv = bytes([NDEF_TLV, 0xFF, (length >> 8) & 0xFF, length & 0xFF]) + message + bytes([TERMINATOR_TLV])

    padding_length = (4 - (len(tlv) % 4)) % 4
    return tlv + (b'\x00' * padding_length)


def status_from_cc(cc: Optional[bytes]):
    """Map capability container bytes to (NDEFStatus, capacity in bytes)"""
    if not cc or len(cc) < 4 or cc[0] != CC_MAGIC:
        return NDEFStatus.NOT_SUPPORTED, 0
    capacity = cc[2] * 8
    if cc[3] == CC_ACCESS_READ_WRITE:
        return NDEFStatus.READ_WRITE, capacity
    if cc[3] == CC_ACCESS_READ_ONLY:
        return NDEFStatus.READ_ONLY, capacity
    return NDEFStatus.NOT_SUPPORTED, capacity


class PcscTag(Tag):
    """NTAG21x tag seen through a PC/SC reader."""

    def __init__(self, card, retries: int = 2):
        self.card = card
        self.retries = retries
        self.connection: Optional[CardConnection] = None
        self.capacity = 0

    def __repr__(self):
        return f"PcscTag(reader={self.card.reader!r}, atr={bytes(self.card.atr).hex()})"

    def open(self):
        self.connection = self.card.createConnection()
        self.connection.connect()

    def close(self):
        if self.connection is not None:
            try:
                self.connection.disconnect()
            except SmartcardException as e:
                logger.debug(f"Disconnect failed: {e}")
            self.connection = None

    def read_page(self, page: int) -> Optional[bytes]:
        """Read exactly 4 bytes from a page."""
        read_command = [0xFF, 0xB0, 0x00, page, 0x04]
        response, sw1, sw2 = self.connection.transmit(read_command)
        if sw1 == 0x90 and sw2 == 0x00:
            return bytes(response[:4])
        return None

    def write_page(self, page: int, data4: bytes):
        """Write exactly 4 bytes to a page, retrying a NACK (SW1=0x63) a couple of times."""
        apdu = [0xFF, 0xD6, 0x00, page, 0x04] + list(data4)
        attempts = 0
        while True:
            logger.debug(f"Writing to page {page}: {data4.hex()}")
            response, sw1, sw2 = self.connection.transmit(apdu)
            if sw1 == 0x90 and sw2 == 0x00:
                return
            if sw1 == 0x63 and attempts < self.retries:
                attempts += 1
                time.sleep(0.05)
                continue
            raise TagIOError(f"Write failed at page {page}: SW1={sw1:02X} SW2={sw2:02X}")

    def query_ndef_status(self, completion):
        try:
            cc = self.read_page(CC_PAGE)
        except SmartcardException as e:
            completion(NDEFStatus.NOT_SUPPORTED, 0, TagIOError(f"Failed to read capability container: {e}"))
            return
        if cc is None:
            completion(NDEFStatus.NOT_SUPPORTED, 0, TagIOError("Reader rejected capability container read"))
            return

        status, self.capacity = status_from_cc(cc)
        logger.debug(f"Capability container {cc.hex()}: {status.value}, {self.capacity} bytes")
        completion(status, self.capacity, None)

    def write_ndef(self, message, completion):
        tlv = wrap_ndef_tlv(message)
        if not self.capacity:
            completion(TagIOError("Tag capacity unknown; query NDEF status before writing"))
            return
        if len(tlv) > self.capacity:
            completion(TagIOError(f"NDEF TLV of {len(tlv)} bytes exceeds tag capacity {self.capacity}"))
            return
        try:
            self._write_tlv(tlv)
        except (TagIOError, SmartcardException) as e:
            completion(e if isinstance(e, TagIOError) else TagIOError(str(e)))
            return
        completion(None)

    def _write_tlv(self, tlv: bytes):
        # Two-phase write:
        # 1) Temporarily set NLEN=0 on the first data page so a partial write reads as empty
        # 2) Write remaining TLV bytes from the next page onward
        # 3) Rewrite the first page with the real header
        logger.debug(f"Starting write operation, TLV length: {len(tlv)} bytes")
        first_page = tlv[0:4]
        self.write_page(FIRST_DATA_PAGE, bytes([NDEF_TLV, 0x00, 0x00, 0x00]))
        time.sleep(0.02)

        remaining = tlv[4:]
        page = FIRST_DATA_PAGE + 1
        while remaining:
            self.write_page(page, remaining[:4])
            remaining = remaining[4:]
            page += 1
            time.sleep(0.01)

        self.write_page(FIRST_DATA_PAGE, first_page)
        logger.debug("Write operation completed successfully")


class PcscObserver(CardObserver):
    def __init__(self, session: "PcscReaderSession"):
        self.session = session

    def update(self, observable, actions):
        (addedcards, removedcards) = actions

        for card in removedcards:
            logger.debug(f"Card removed: {card}")

        if addedcards:
            self.session.cards_detected(addedcards)


class PcscReaderSession(ReaderSession):
    """Reader session backed by pyscard's CardMonitor."""

    def __init__(self, delegate, invalidate_after_first_read=False, preferred_reader: str = PREFERRED_READER):
        super().__init__(delegate, invalidate_after_first_read)
        self.preferred_reader = preferred_reader
        self.reader = None
        self.monitor = None
        self.observer = None
        self.tag: Optional[PcscTag] = None
        self.is_active = False

    def begin(self):
        """Start monitoring for tags. Raises ReaderNotFoundError."""
        self.reader = select_reader(self.preferred_reader)
        self.is_active = True
        logger.info(f"Started monitoring with reader: {self.reader}")
        self.delegate.session_did_become_active(self)
        self._start_monitoring()

    def _start_monitoring(self):
        self.observer = PcscObserver(self)
        self.monitor = CardMonitor()
        self.monitor.addObserver(self.observer)

    def _stop_monitoring(self):
        if self.monitor and self.observer:
            self.monitor.deleteObserver(self.observer)
        self.monitor = None
        self.observer = None

    def cards_detected(self, cards):
        if not self.is_active:
            return
        # CardMonitor reports cards from every reader on the system
        cards = [card for card in cards if str(card.reader) == str(self.reader)]
        if not cards:
            return
        tags = [PcscTag(card) for card in cards]
        if self.invalidate_after_first_read:
            self._stop_monitoring()
        self.delegate.session_did_detect_tags(self, tags)

    def restart_polling(self):
        # Re-adding the observer makes CardMonitor report the cards present now
        if not self.is_active:
            return
        self._stop_monitoring()
        self._start_monitoring()

    def connect(self, tag, completion):
        try:
            tag.open()
        except SmartcardException as e:
            completion(TagIOError(f"Failed to connect to card: {e}"))
            return
        self.tag = tag
        completion(None)

    def invalidate(self):
        if not self.is_active:
            return
        self.is_active = False
        self._stop_monitoring()
        if self.tag is not None:
            self.tag.close()
            self.tag = None
        logger.info("Stopped NFC monitoring")
        self.delegate.session_did_invalidate(self, None)
