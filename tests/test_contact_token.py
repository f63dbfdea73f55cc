import pytest

PREFIX = "https://meshtastic.org/v/#"


class TestEncode:
    def test_known_token(self):
        from contact_token import ContactRecord, encode
        # node_num=1 (08 01), manually_verified=true (20 01)
        assert encode(ContactRecord(device_id=1, verified=True)) == PREFIX + "CAEgAQ"

    def test_default_record_is_bare_prefix(self):
        from contact_token import ContactRecord, encode
        assert encode(ContactRecord()) == PREFIX

    def test_encode_is_deterministic(self):
        from contact_token import ContactRecord, encode
        record = ContactRecord(device_id=42, identity=b"\x12\x04Node", verified=True)
        assert encode(record) == encode(record)

    def test_token_is_url_safe(self):
        from contact_token import ContactRecord, encode
        # these identity bytes encode to '+' and '/' in standard base64
        record = ContactRecord(device_id=7, identity=b"\xfb\xff\xbf" * 5, verified=False)
        fragment = encode(record)[len(PREFIX):]
        assert "+" not in fragment
        assert "/" not in fragment
        assert "=" not in fragment

    def test_device_id_out_of_range_rejected(self):
        from contact_token import ContactRecord, encode
        with pytest.raises(ValueError):
            encode(ContactRecord(device_id=2 ** 32))

    def test_negative_device_id_rejected(self):
        from contact_token import ContactRecord, encode
        with pytest.raises(ValueError):
            encode(ContactRecord(device_id=-1))


class TestDecode:
    @pytest.mark.parametrize("record_args", [
        {},
        {"device_id": 0xFFFFFFFF},
        {"device_id": 3735928559, "identity": b"\x0a\x09!deadbeef\x12\x04Base", "verified": True},
        {"identity": bytes(range(256))},
    ])
    def test_round_trip(self, record_args):
        from contact_token import ContactRecord, decode, encode
        record = ContactRecord(**record_args)
        assert decode(encode(record)) == record

    def test_missing_prefix(self):
        from contact_token import MalformedPrefixError, decode
        with pytest.raises(MalformedPrefixError):
            decode("not-a-valid-url")

    def test_other_host_is_malformed(self):
        from contact_token import MalformedPrefixError, decode
        with pytest.raises(MalformedPrefixError):
            decode("https://example.com/v/#CAEgAQ")

    def test_invalid_characters(self):
        from contact_token import InvalidBase64Error, decode
        with pytest.raises(InvalidBase64Error):
            decode(PREFIX + "CAEg$Q")

    def test_standard_alphabet_is_rejected(self):
        from contact_token import InvalidBase64Error, decode
        with pytest.raises(InvalidBase64Error):
            decode(PREFIX + "+/8=")

    def test_impossible_length(self):
        from contact_token import InvalidBase64Error, decode
        with pytest.raises(InvalidBase64Error):
            decode(PREFIX + "CAEgA")

    def test_truncated_message_is_invalid_schema(self):
        from contact_token import InvalidSchemaError, decode, to_base64url
        # user field claims 5 bytes but carries 2
        with pytest.raises(InvalidSchemaError):
            decode(PREFIX + to_base64url(b"\x12\x05ab"))

    def test_decode_errors_are_value_errors(self):
        from contact_token import DecodeError, decode
        with pytest.raises(ValueError):
            decode("nope")
        with pytest.raises(DecodeError):
            decode("nope")

    def test_unknown_fields_are_dropped(self):
        from contact_token import ContactRecord, decode, to_base64url
        # node_num=1, should_ignore=true (field 3)
        record = decode(PREFIX + to_base64url(b"\x08\x01\x18\x01"))
        assert record == ContactRecord(device_id=1, identity=b"", verified=False)


class TestBase64Url:
    def test_alphabet_substitution(self):
        from contact_token import to_base64url
        assert to_base64url(b"\xfb\xff") == "-_8"

    def test_restores_padding(self):
        from contact_token import from_base64url
        assert from_base64url("-_8") == b"\xfb\xff"
        assert from_base64url("CAEgAQ") == b"\x08\x01\x20\x01"

    def test_empty(self):
        from contact_token import from_base64url, to_base64url
        assert to_base64url(b"") == ""
        assert from_base64url("") == b""


class TestIdentity:
    def test_describe_built_user(self):
        from contact_token import build_user, describe_user
        identity = build_user(user_id="!deadbeef", long_name="Base Station", short_name="BASE",
                              public_key=b"\x01" * 32)
        assert describe_user(identity) == {
            "id": "!deadbeef",
            "long_name": "Base Station",
            "short_name": "BASE",
            "public_key": b"\x01" * 32,
        }

    def test_describe_empty_identity(self):
        from contact_token import describe_user
        assert describe_user(b"") == {}

    def test_describe_garbage_identity(self):
        from contact_token import describe_user
        assert describe_user(b"\x12\x05ab") == {}

    def test_record_without_node_uses_defaults(self):
        from contact_token import ContactRecord, record_for_node
        assert record_for_node(None, None) == ContactRecord(device_id=0, identity=b"", verified=True)

    def test_record_for_node(self):
        from contact_token import ContactRecord, record_for_node
        assert record_for_node(12, b"\x12\x01A") == ContactRecord(device_id=12, identity=b"\x12\x01A", verified=True)
