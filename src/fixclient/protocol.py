"""
FIX tag=value protocol implementation.

This module handles the encoding and decoding of FIX messages and the
incremental framing of a FIX byte stream.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Tuple
from .exceptions import GarbledMessageError, ProtocolError


SOH = b"\x01"

# "10=NNN" plus the trailing SOH
TRAILER_LENGTH = 7


class FIXVersion(Enum):
    FIX_4_0 = "FIX.4.0"
    FIX_4_1 = "FIX.4.1"
    FIX_4_2 = "FIX.4.2"
    FIX_4_3 = "FIX.4.3"
    FIX_4_4 = "FIX.4.4"
    FIXT_1_1 = "FIXT.1.1"

    @property
    def begin_string(self) -> str:
        return self.value


# Session level tags
class Tags:
    BEGIN_SEQ_NO = 7
    BEGIN_STRING = 8
    BODY_LENGTH = 9
    CHECK_SUM = 10
    END_SEQ_NO = 16
    MSG_SEQ_NUM = 34
    MSG_TYPE = 35
    NEW_SEQ_NO = 36
    POSS_DUP_FLAG = 43
    SENDER_COMP_ID = 49
    SENDING_TIME = 52
    TARGET_COMP_ID = 56
    TEXT = 58
    ENCRYPT_METHOD = 98
    HEART_BT_INT = 108
    TEST_REQ_ID = 112
    GAP_FILL_FLAG = 123
    RESET_SEQ_NUM_FLAG = 141
    DEFAULT_APPL_VER_ID = 1137


# Session level message types
class MsgTypes:
    HEARTBEAT = "0"
    TEST_REQUEST = "1"
    RESEND_REQUEST = "2"
    REJECT = "3"
    SEQUENCE_RESET = "4"
    LOGOUT = "5"
    LOGON = "A"


MSG_TYPE_NAMES = {
    MsgTypes.HEARTBEAT: "Heartbeat",
    MsgTypes.TEST_REQUEST: "TestRequest",
    MsgTypes.RESEND_REQUEST: "ResendRequest",
    MsgTypes.REJECT: "Reject",
    MsgTypes.SEQUENCE_RESET: "SequenceReset",
    MsgTypes.LOGOUT: "Logout",
    MsgTypes.LOGON: "Logon",
    "8": "ExecutionReport",
    "9": "OrderCancelReject",
    "D": "NewOrderSingle",
    "F": "OrderCancelRequest",
    "G": "OrderCancelReplaceRequest",
    "j": "BusinessMessageReject",
}

# Envelope fields are computed on encode, never taken from the field list
_ENVELOPE_TAGS = frozenset({Tags.BEGIN_STRING, Tags.BODY_LENGTH, Tags.CHECK_SUM})


@dataclass(frozen=True)
class FIXConfig:
    """Protocol-level settings passed through to the session."""

    version: FIXVersion = FIXVersion.FIX_4_2
    sender_comp_id: str = ""
    target_comp_id: str = ""
    heart_bt_int: int = 30
    max_field_count: int = 1024
    field_capacity: int = 1024
    rx_buffer_capacity: int = 1024 * 1024
    tx_buffer_capacity: int = 1024 * 1024


def checksum(data: bytes) -> int:
    """Calculate the FIX CheckSum: byte sum modulo 256."""
    return sum(data) % 256


def get_msg_type_name(msg_type: Optional[str]) -> str:
    """Get human-readable message type name."""
    if msg_type is None:
        return "UNKNOWN"
    return MSG_TYPE_NAMES.get(msg_type, msg_type)


class FIXMessage:
    """
    Represents a FIX message as an ordered list of (tag, value) fields.

    Wire format:
    8=BeginString | 9=BodyLength | body fields ... | 10=CheckSum

    Every field is terminated by SOH (0x01).
    """

    def __init__(self, fields: Optional[Iterable[Tuple[int, str]]] = None):
        self.fields: List[Tuple[int, str]] = [(int(tag), str(value)) for tag, value in (fields or [])]

    def add(self, tag: int, value) -> "FIXMessage":
        self.fields.append((tag, str(value)))
        return self

    def get(self, tag: int, default: Optional[str] = None) -> Optional[str]:
        for field_tag, value in self.fields:
            if field_tag == tag:
                return value
        return default

    def get_int(self, tag: int) -> Optional[int]:
        value = self.get(tag)
        if value is None:
            return None
        try:
            return int(value)
        except ValueError:
            return None

    @property
    def msg_type(self) -> Optional[str]:
        return self.get(Tags.MSG_TYPE)

    @property
    def msg_seq_num(self) -> Optional[int]:
        return self.get_int(Tags.MSG_SEQ_NUM)

    def encode(self, begin_string: str) -> bytes:
        """
        Encode the message with a fresh BodyLength and CheckSum.

        Args:
            begin_string: BeginString of the session's FIX version

        Returns:
            bytes: Encoded message ready for transmission
        """
        body = b"".join(
            f"{tag}={value}".encode("utf-8") + SOH
            for tag, value in self.fields
            if tag not in _ENVELOPE_TAGS
        )
        header = f"8={begin_string}\x019={len(body)}\x01".encode("ascii")
        trailer = f"10={checksum(header + body):03d}\x01".encode("ascii")
        return header + body + trailer

    @classmethod
    def decode(
        cls,
        data: bytes,
        max_field_count: int = 1024,
        field_capacity: int = 1024,
    ) -> "FIXMessage":
        """
        Decode one complete message from wire format.

        Args:
            data: Raw bytes of exactly one message
            max_field_count: Maximum number of fields accepted
            field_capacity: Maximum length of a single field value

        Returns:
            FIXMessage: Decoded message

        Raises:
            GarbledMessageError: If the message is malformed
        """
        if not data.endswith(SOH):
            raise GarbledMessageError("Message not terminated by SOH")

        trailer_start = data.rfind(SOH + b"10=", 0, len(data) - 1) + 1
        if trailer_start == 0:
            raise GarbledMessageError("CheckSum missing")

        fields = []
        for raw in data[:-1].split(SOH):
            tag, sep, value = raw.partition(b"=")
            if not sep or not tag.isdigit():
                raise GarbledMessageError(f"Malformed field: {raw!r}")
            if len(value) > field_capacity:
                raise GarbledMessageError(f"Field {int(tag)} exceeds capacity")
            fields.append((int(tag), value.decode("utf-8", errors="replace")))

        if len(fields) > max_field_count:
            raise GarbledMessageError("Too many fields")

        if len(fields) < 3 or fields[0][0] != Tags.BEGIN_STRING or fields[1][0] != Tags.BODY_LENGTH:
            raise GarbledMessageError("BeginString and BodyLength must lead the message")
        if fields[-1][0] != Tags.CHECK_SUM:
            raise GarbledMessageError("CheckSum must end the message")

        body_start = data.index(SOH, data.index(SOH) + 1) + 1
        try:
            body_length = int(fields[1][1])
        except ValueError:
            raise GarbledMessageError(f"Invalid BodyLength: {fields[1][1]}")
        if body_length != trailer_start - body_start:
            raise GarbledMessageError("BodyLength mismatch")

        try:
            received_checksum = int(fields[-1][1])
        except ValueError:
            raise GarbledMessageError(f"Invalid CheckSum: {fields[-1][1]}")
        if received_checksum != checksum(data[:trailer_start]):
            raise GarbledMessageError("CheckSum mismatch")

        return cls(fields)

    def __str__(self) -> str:
        return "|".join(f"{tag}={value}" for tag, value in self.fields)

    def __repr__(self) -> str:
        return f"FIXMessage(msg_type={self.msg_type!r}, fields={len(self.fields)})"


class FIXParser:
    """
    Incremental framer for a FIX byte stream.

    Bytes are appended with feed(); complete messages are taken out one at a
    time with next_message().
    """

    def __init__(self, config: Optional[FIXConfig] = None):
        self.config = config or FIXConfig()
        self._buffer = bytearray()

    def feed(self, data: bytes) -> None:
        if len(self._buffer) + len(data) > self.config.rx_buffer_capacity:
            raise ProtocolError("Receive buffer full")
        self._buffer.extend(data)

    def next_message(self) -> Optional[FIXMessage]:
        """
        Take the next complete message out of the buffer.

        Returns:
            FIXMessage, or None if no complete message is buffered

        Raises:
            GarbledMessageError: If the next frame is corrupt; the frame
                is discarded and parsing can continue
            ProtocolError: If the stream cannot be framed at all
        """
        frame = self._next_frame()
        if frame is None:
            return None
        return FIXMessage.decode(
            frame,
            max_field_count=self.config.max_field_count,
            field_capacity=self.config.field_capacity,
        )

    def _next_frame(self) -> Optional[bytes]:
        buffer = self._buffer

        if len(buffer) < 2:
            return None
        if buffer[:2] != b"8=":
            raise ProtocolError("BeginString expected")

        begin_end = buffer.find(SOH)
        if begin_end == -1:
            return None
        if len(buffer) < begin_end + 3:
            return None
        if buffer[begin_end + 1:begin_end + 3] != b"9=":
            raise ProtocolError("BodyLength expected")

        length_end = buffer.find(SOH, begin_end + 1)
        if length_end == -1:
            return None
        try:
            body_length = int(buffer[begin_end + 3:length_end])
        except ValueError:
            raise ProtocolError("Invalid BodyLength")

        frame_end = length_end + 1 + body_length + TRAILER_LENGTH
        if len(buffer) < frame_end:
            return None

        frame = bytes(buffer[:frame_end])
        del buffer[:frame_end]
        return frame
