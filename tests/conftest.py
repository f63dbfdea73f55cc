import pytest

from nfc_driver import ReaderSession, Tag


class FakeTag(Tag):
    """Tag that records calls and holds completions until the test fires them."""

    def __init__(self, name="tag"):
        self.name = name
        self.status_completions = []
        self.write_completions = []
        self.written = []

    def __repr__(self):
        return f"FakeTag({self.name})"

    def query_ndef_status(self, completion):
        self.status_completions.append(completion)

    def write_ndef(self, message, completion):
        self.written.append(message)
        self.write_completions.append(completion)


class FakeReaderSession(ReaderSession):
    """Reader session whose delegate events are driven by the test."""

    instances = []

    def __init__(self, delegate, invalidate_after_first_read=False):
        super().__init__(delegate, invalidate_after_first_read)
        self.began = False
        self.restart_count = 0
        self.invalidate_count = 0
        self.connect_completions = []
        FakeReaderSession.instances.append(self)

    def begin(self):
        self.began = True

    def restart_polling(self):
        self.restart_count += 1

    def connect(self, tag, completion):
        self.connect_completions.append(completion)

    def invalidate(self):
        self.invalidate_count += 1
        self.delegate.session_did_invalidate(self, None)

    # helpers for tests

    def activate(self):
        self.delegate.session_did_become_active(self)

    def detect(self, *tags):
        self.delegate.session_did_detect_tags(self, list(tags))


class FakeTimer:
    """threading.Timer stand-in; fire() runs the callback."""

    created = []

    def __init__(self, delay, function):
        self.delay = delay
        self.function = function
        self.started = False
        self.cancelled = False
        self.daemon = False
        FakeTimer.created.append(self)

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.function()


@pytest.fixture(autouse=True)
def reset_fakes():
    FakeReaderSession.instances.clear()
    FakeTimer.created.clear()
    yield


@pytest.fixture
def outcomes():
    return []


@pytest.fixture
def session(outcomes):
    from nfc_session import TagWriteSession
    return TagWriteSession(
        FakeReaderSession,
        on_complete=outcomes.append,
        timer_factory=FakeTimer,
    )


@pytest.fixture
def token():
    from contact_token import ContactRecord, encode
    return encode(ContactRecord(device_id=0xDEADBEEF, identity=b"\x0a\x05!abcd", verified=True))
