"""
FIX session for the terminal client.

This module implements the initiator side of a FIX session: TCP
connection, Logon, sequence numbers, keep-alive and Logout. Inbound
messages are processed on a background receiver thread and recorded in
the message sink.
"""

import logging
import socket
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Optional, Tuple
from .messages import Messages
from .protocol import FIXConfig, FIXMessage, FIXParser, FIXVersion, MsgTypes, Tags, get_msg_type_name
from .exceptions import ConnectionClosedError, ConnectionError, GarbledMessageError, ProtocolError


logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 10.0
RECEIVE_BUFFER_SIZE = 4096

# The receiver wakes up at least this often to run the keep-alive timers
TICK_INTERVAL = 1.0

TEST_REQUEST_FACTOR = 1.2
HEARTBEAT_TIMEOUT_FACTOR = 2.0

# DefaultApplVerID(1137) for FIX 5.0 SP2 over FIXT.1.1
DEFAULT_APPL_VER_ID = "9"

HEADER_TAGS = frozenset({
    Tags.BEGIN_STRING,
    Tags.BODY_LENGTH,
    Tags.CHECK_SUM,
    Tags.MSG_TYPE,
    Tags.SENDER_COMP_ID,
    Tags.TARGET_COMP_ID,
    Tags.MSG_SEQ_NUM,
    Tags.SENDING_TIME,
})


def sending_time() -> str:
    """Current UTC time as a FIX UTCTimestamp with milliseconds."""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y%m%d-%H:%M:%S.") + f"{now.microsecond // 1000:03d}"


class Session:
    """
    Initiator side of a FIX session.

    Outbound messages are serialized by one lock shared by the console
    thread and the receiver thread. close() is idempotent and may be
    called from either thread.
    """

    def __init__(
        self,
        sock: socket.socket,
        config: FIXConfig,
        messages: Messages,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.socket = sock
        self.config = config
        self.messages = messages
        self._clock = clock
        self._parser = FIXParser(config)
        self._send_lock = threading.RLock()
        self._receiver: Optional[threading.Thread] = None

        self._closed = False
        self._connected = True
        self._logged_on = False
        self._logout_sent = False

        self._tx_seq_num = 1
        self._rx_seq_num = 1
        self._resend_requested = False
        self._test_request_pending = False
        self._test_req_id = 0

        now = clock()
        self._last_tx = now
        self._last_rx = now

    @classmethod
    def open(
        cls,
        address: Tuple[str, int],
        config: FIXConfig,
        messages: Messages,
    ) -> "Session":
        """
        Connect to the counterparty and start the session.

        Args:
            address: (host, port) of the acceptor
            config: Protocol-level configuration
            messages: Sink receiving every message and event

        Returns:
            Session: A session with Logon sent

        Raises:
            ConnectionError: If the connection cannot be established
        """
        host, port = address
        try:
            logger.info(f"Connecting to {host}:{port}")
            sock = socket.create_connection(address, timeout=CONNECT_TIMEOUT)
        except OSError as e:
            error_msg = f"Failed to connect to {host}:{port}: {e}"
            logger.error(error_msg)
            messages.record_event("error", error_msg, {"error_type": "connection_failed"})
            raise ConnectionError(error_msg) from e

        messages.record_event(
            "connection",
            f"Connected to {host}:{port}",
            {"host": host, "port": port},
        )
        logger.info("Connection established")

        session = cls(sock, config, messages)
        session.start()
        return session

    def start(self) -> None:
        """Send Logon and start the receiver thread."""
        self.socket.settimeout(TICK_INTERVAL)

        logon = FIXMessage([
            (Tags.MSG_TYPE, MsgTypes.LOGON),
            (Tags.ENCRYPT_METHOD, 0),
            (Tags.HEART_BT_INT, self.config.heart_bt_int),
            (Tags.RESET_SEQ_NUM_FLAG, "Y"),
        ])
        if self.config.version is FIXVersion.FIXT_1_1:
            logon.add(Tags.DEFAULT_APPL_VER_ID, DEFAULT_APPL_VER_ID)
        self.send(logon)

        self._receiver = threading.Thread(
            target=self._receive_loop,
            name="fix-session-receiver",
            daemon=True,
        )
        self._receiver.start()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def logged_on(self) -> bool:
        return self._logged_on

    @property
    def tx_seq_num(self) -> int:
        return self._tx_seq_num

    @property
    def rx_seq_num(self) -> int:
        return self._rx_seq_num

    def send(self, message: FIXMessage) -> FIXMessage:
        """
        Send a message, filling in the standard header.

        Args:
            message: Message holding MsgType(35) and body fields

        Returns:
            FIXMessage: The message as sent

        Raises:
            ConnectionClosedError: If the session is closed or the write fails
            ProtocolError: If the message has no MsgType or is too large
        """
        with self._send_lock:
            if self._closed:
                raise ConnectionClosedError("Session closed")
            return self._send_locked(message)

    def _send_locked(self, message: FIXMessage) -> FIXMessage:
        msg_type = message.msg_type
        if not msg_type:
            raise ProtocolError("MsgType missing")

        outbound = FIXMessage([
            (Tags.MSG_TYPE, msg_type),
            (Tags.SENDER_COMP_ID, self.config.sender_comp_id),
            (Tags.TARGET_COMP_ID, self.config.target_comp_id),
            (Tags.MSG_SEQ_NUM, self._tx_seq_num),
            (Tags.SENDING_TIME, sending_time()),
        ])
        for tag, value in message.fields:
            if tag not in HEADER_TAGS:
                outbound.add(tag, value)

        data = outbound.encode(self.config.version.begin_string)
        if len(data) > self.config.tx_buffer_capacity:
            raise ProtocolError("Message exceeds transmit buffer capacity")

        try:
            self.socket.sendall(data)
        except OSError as e:
            error_msg = f"Failed to send message: {e}"
            logger.error(error_msg)
            self.messages.record_event("error", error_msg, {"error_type": "send_failed"})
            raise ConnectionClosedError(error_msg) from e

        self._tx_seq_num += 1
        self._last_tx = self._clock()
        self.messages.record_outbound(outbound)
        logger.debug(f"Sent {get_msg_type_name(msg_type)} (MsgSeqNum={outbound.msg_seq_num})")
        return outbound

    def _send_logout_locked(self, text: Optional[str] = None) -> None:
        logout = FIXMessage([(Tags.MSG_TYPE, MsgTypes.LOGOUT)])
        if text:
            logout.add(Tags.TEXT, text)
        try:
            self._send_locked(logout)
            self._logout_sent = True
        except ConnectionClosedError as e:
            logger.debug(f"Logout not sent: {e}")

    def close(self) -> None:
        """Close the session; later calls do nothing."""
        with self._send_lock:
            if self._closed:
                return
            if self._logged_on and self._connected and not self._logout_sent:
                self._send_logout_locked()
            self._closed = True

        try:
            self.socket.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            logger.debug(f"Socket shutdown failed: {e}")
        self.socket.close()

        receiver = self._receiver
        if receiver is not None and receiver is not threading.current_thread():
            receiver.join(timeout=2 * TICK_INTERVAL)

        self.messages.record_event("disconnection", "Session closed")
        self.messages.mark_closed()
        logger.info("Session closed")

    def _connection_lost(self, description: str, error_type: str) -> None:
        self._connected = False
        logger.warning(description)
        self.messages.record_event("error", description, {"error_type": error_type})
        self.close()

    def _logout_and_close(self, text: str) -> None:
        logger.error(text)
        self.messages.record_event("error", text, {"error_type": "protocol_error"})
        with self._send_lock:
            if not self._closed and not self._logout_sent:
                self._send_logout_locked(text)
        self.close()

    def _receive_loop(self) -> None:
        while not self._closed:
            try:
                data = self.socket.recv(RECEIVE_BUFFER_SIZE)
            except socket.timeout:
                data = None
            except OSError as e:
                if not self._closed:
                    self._connection_lost(f"Failed to receive message: {e}", "receive_failed")
                return

            if data == b"":
                if not self._closed:
                    self._connection_lost("Connection closed by counterparty", "disconnected")
                return

            try:
                if data:
                    self.process(data)
                self.keep_alive()
            except ProtocolError as e:
                self._logout_and_close(str(e))
                return
            except ConnectionClosedError as e:
                if not self._closed:
                    self._connection_lost(str(e), "send_failed")
                return

    def process(self, data: bytes) -> None:
        """
        Feed received bytes through the parser and handle every
        complete message.

        Raises:
            ProtocolError: If the stream cannot be framed
        """
        self._parser.feed(data)
        while True:
            try:
                message = self._parser.next_message()
            except GarbledMessageError as e:
                logger.warning(f"Garbled message: {e}")
                self.messages.record_event("garbled_message", str(e))
                continue
            if message is None:
                return
            self.handle(message)
            if self._closed:
                return

    def handle(self, message: FIXMessage) -> None:
        """Apply one inbound message to the session state."""
        self._last_rx = self._clock()
        self._test_request_pending = False
        self.messages.record_inbound(message)

        msg_type = message.msg_type
        logger.debug(f"Received {get_msg_type_name(msg_type)} (MsgSeqNum={message.msg_seq_num})")

        if msg_type == MsgTypes.SEQUENCE_RESET:
            self._handle_sequence_reset(message)
            return

        msg_seq_num = message.msg_seq_num
        if msg_seq_num is None:
            self.messages.record_event("error", "MsgSeqNum missing", {"error_type": "protocol_error"})
            return

        if msg_seq_num < self._rx_seq_num:
            if message.get(Tags.POSS_DUP_FLAG) == "Y":
                return
            self._logout_and_close(
                f"MsgSeqNum too low, expecting {self._rx_seq_num} but received {msg_seq_num}"
            )
            return

        if msg_seq_num > self._rx_seq_num:
            self._request_resend(msg_seq_num)
        else:
            self._rx_seq_num += 1
            self._resend_requested = False

        if msg_type == MsgTypes.LOGON:
            self._logged_on = True
            self.messages.record_event("logon", "Logon accepted")
            logger.info("Logon accepted")
        elif msg_type == MsgTypes.TEST_REQUEST:
            heartbeat = FIXMessage([(Tags.MSG_TYPE, MsgTypes.HEARTBEAT)])
            test_req_id = message.get(Tags.TEST_REQ_ID)
            if test_req_id is not None:
                heartbeat.add(Tags.TEST_REQ_ID, test_req_id)
            self.send(heartbeat)
        elif msg_type == MsgTypes.RESEND_REQUEST:
            self._send_sequence_reset()
        elif msg_type == MsgTypes.REJECT:
            self.messages.record_event("reject", message.get(Tags.TEXT, "Message rejected"))
        elif msg_type == MsgTypes.LOGOUT:
            self.messages.record_event("logout", message.get(Tags.TEXT, "Logout received"))
            with self._send_lock:
                if not self._closed and not self._logout_sent:
                    self._send_logout_locked()
            self.close()

    def _handle_sequence_reset(self, message: FIXMessage) -> None:
        new_seq_no = message.get_int(Tags.NEW_SEQ_NO)
        if new_seq_no is None:
            self.messages.record_event("error", "NewSeqNo missing", {"error_type": "protocol_error"})
            return
        if new_seq_no > self._rx_seq_num:
            self._rx_seq_num = new_seq_no
            self._resend_requested = False

    def _request_resend(self, received: int) -> None:
        if self._resend_requested:
            return
        self.messages.record_event(
            "resend_request",
            f"MsgSeqNum too high, expecting {self._rx_seq_num} but received {received}",
        )
        self.send(FIXMessage([
            (Tags.MSG_TYPE, MsgTypes.RESEND_REQUEST),
            (Tags.BEGIN_SEQ_NO, self._rx_seq_num),
            (Tags.END_SEQ_NO, 0),
        ]))
        self._resend_requested = True

    def _send_sequence_reset(self) -> None:
        with self._send_lock:
            if self._closed:
                raise ConnectionClosedError("Session closed")
            # The reset itself takes the current number
            self._send_locked(FIXMessage([
                (Tags.MSG_TYPE, MsgTypes.SEQUENCE_RESET),
                (Tags.GAP_FILL_FLAG, "N"),
                (Tags.NEW_SEQ_NO, self._tx_seq_num + 1),
            ]))

    def keep_alive(self) -> None:
        """Run the heartbeat and test request timers."""
        interval = self.config.heart_bt_int
        if interval <= 0 or self._closed:
            return

        now = self._clock()
        if now - self._last_rx >= HEARTBEAT_TIMEOUT_FACTOR * interval:
            self._connection_lost("Too long since last received message", "heartbeat_timeout")
            return

        if now - self._last_tx >= interval:
            self.send(FIXMessage([(Tags.MSG_TYPE, MsgTypes.HEARTBEAT)]))

        if not self._test_request_pending and now - self._last_rx >= TEST_REQUEST_FACTOR * interval:
            self._test_req_id += 1
            self.send(FIXMessage([
                (Tags.MSG_TYPE, MsgTypes.TEST_REQUEST),
                (Tags.TEST_REQ_ID, self._test_req_id),
            ]))
            self._test_request_pending = True
