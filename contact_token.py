"""
Contact token encoding for Meshtastic NFC tags
Turns a SharedContact record into a https://meshtastic.org/v/# URL and back
"""

import base64
import binascii
import re
from dataclasses import dataclass
from typing import Optional

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory
from google.protobuf.message import DecodeError as ProtobufDecodeError

TOKEN_PREFIX = "https://meshtastic.org/v/#"
MAX_NODE_NUM = 0xFFFFFFFF

_BASE64URL_RE = re.compile(r"^[A-Za-z0-9_-]*$")


class DecodeError(ValueError):
    """Base class for token decoding errors."""
    pass


class MalformedPrefixError(DecodeError):
    """Token does not start with the contact URL prefix."""
    pass


class InvalidBase64Error(DecodeError):
    """Token fragment is not valid url-safe base64."""
    pass


class InvalidSchemaError(DecodeError):
    """Decoded bytes are not a SharedContact message."""
    pass


def _build_message_classes():
    """Build the SharedContact and User message classes at import time.

    Only the fields this tool reads or writes are declared. SharedContact.user
    is declared as bytes: a length-delimited field is wire compatible with the
    embedded User message, and keeps the identity opaque.
    """
    FieldProto = descriptor_pb2.FieldDescriptorProto
    file_proto = descriptor_pb2.FileDescriptorProto(
        name="nfc_contact/shared_contact.proto",
        package="nfc_contact",
        syntax="proto3",
    )

    user = file_proto.message_type.add(name="User")
    user.field.add(name="id", number=1, type=FieldProto.TYPE_STRING, label=FieldProto.LABEL_OPTIONAL)
    user.field.add(name="long_name", number=2, type=FieldProto.TYPE_STRING, label=FieldProto.LABEL_OPTIONAL)
    user.field.add(name="short_name", number=3, type=FieldProto.TYPE_STRING, label=FieldProto.LABEL_OPTIONAL)
    user.field.add(name="public_key", number=8, type=FieldProto.TYPE_BYTES, label=FieldProto.LABEL_OPTIONAL)

    contact = file_proto.message_type.add(name="SharedContact")
    contact.field.add(name="node_num", number=1, type=FieldProto.TYPE_UINT32, label=FieldProto.LABEL_OPTIONAL)
    contact.field.add(name="user", number=2, type=FieldProto.TYPE_BYTES, label=FieldProto.LABEL_OPTIONAL)
    contact.field.add(name="manually_verified", number=4, type=FieldProto.TYPE_BOOL, label=FieldProto.LABEL_OPTIONAL)

    pool = descriptor_pool.DescriptorPool()
    pool.AddSerializedFile(file_proto.SerializeToString())
    return (
        message_factory.GetMessageClass(pool.FindMessageTypeByName("nfc_contact.SharedContact")),
        message_factory.GetMessageClass(pool.FindMessageTypeByName("nfc_contact.User")),
    )


SharedContact, User = _build_message_classes()


@dataclass(frozen=True)
class ContactRecord:
    """A node contact as carried on the tag."""
    device_id: int = 0
    identity: bytes = b""
    verified: bool = False


def to_base64url(data: bytes) -> str:
    """Standard base64 with '+' -> '-', '/' -> '_' and the '=' padding stripped"""
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def from_base64url(text: str) -> bytes:
    """Reverse of to_base64url. Raises InvalidBase64Error."""
    if not _BASE64URL_RE.match(text) or len(text) % 4 == 1:
        raise InvalidBase64Error(f"Not url-safe base64: {text!r}")
    padded = text + "=" * (-len(text) % 4)
    try:
        return base64.urlsafe_b64decode(padded)
    except (binascii.Error, ValueError) as e:
        raise InvalidBase64Error(f"Not url-safe base64: {text!r}") from e


def encode(record: ContactRecord) -> str:
    """Serialize a ContactRecord into a contact token URL.

    Raises ValueError if device_id does not fit in an unsigned 32-bit integer;
    out of range values are rejected rather than truncated.
    """
    if not 0 <= record.device_id <= MAX_NODE_NUM:
        raise ValueError(f"device_id out of range for uint32: {record.device_id}")

    contact = SharedContact(
        node_num=record.device_id,
        user=bytes(record.identity),
        manually_verified=bool(record.verified),
    )
    # Deterministic serialization keeps tokens stable across runs
    data = contact.SerializeToString(deterministic=True)
    return TOKEN_PREFIX + to_base64url(data)


def decode(token: str) -> ContactRecord:
    """Parse a contact token URL back into a ContactRecord.

    Raises MalformedPrefixError, InvalidBase64Error or InvalidSchemaError.
    """
    if not token.startswith(TOKEN_PREFIX):
        raise MalformedPrefixError(f"Unrecognised contact token: {token!r}")

    data = from_base64url(token[len(TOKEN_PREFIX):])

    contact = SharedContact()
    try:
        contact.ParseFromString(data)
    except ProtobufDecodeError as e:
        raise InvalidSchemaError(f"Token payload is not a SharedContact: {e}") from e

    return ContactRecord(
        device_id=contact.node_num,
        identity=bytes(contact.user),
        verified=contact.manually_verified,
    )


def build_user(user_id: str = "", long_name: str = "", short_name: str = "",
               public_key: bytes = b"") -> bytes:
    """Serialize the identity fields of a node into User message bytes"""
    user = User(id=user_id, long_name=long_name, short_name=short_name, public_key=public_key)
    return user.SerializeToString(deterministic=True)


def describe_user(identity: bytes) -> dict:
    """Read the display fields out of identity bytes.

    Returns an empty dict when the identity is empty or not a User message.
    """
    if not identity:
        return {}
    user = User()
    try:
        user.ParseFromString(identity)
    except ProtobufDecodeError:
        return {}
    return {
        "id": user.id,
        "long_name": user.long_name,
        "short_name": user.short_name,
        "public_key": bytes(user.public_key),
    }


def record_for_node(node_num: Optional[int], identity: Optional[bytes], verified: bool = True) -> ContactRecord:
    """Build the record for the active node, or a default one when there is no node"""
    return ContactRecord(
        device_id=node_num or 0,
        identity=identity or b"",
        verified=verified,
    )
