"""
Integration tests running the console against a loopback FIX acceptor.
"""

import io
import json
import socket
import threading
import pytest
from rich.console import Console
from src.fixclient.console import TerminalClient
from src.fixclient.protocol import FIXConfig, FIXMessage, FIXParser, FIXVersion, MsgTypes, Tags


pytestmark = pytest.mark.integration


class Acceptor:
    """
    Minimal FIX acceptor serving one connection on a background thread.

    It answers Logon with Logon, NewOrderSingle with an ExecutionReport
    and Logout with Logout. With disconnect_after_logon it drops the
    connection right after the Logon reply.
    """

    def __init__(self, disconnect_after_logon=False, test_request=None):
        self.server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.server.bind(("127.0.0.1", 0))
        self.server.listen(1)
        self.server.settimeout(5.0)
        self.address = self.server.getsockname()
        self.disconnect_after_logon = disconnect_after_logon
        self.test_request = test_request
        self.received = []
        self.seq_num = 1
        self.thread = threading.Thread(target=self._serve, daemon=True)
        self.thread.start()

    def _send(self, conn, msg_type, *fields):
        message = FIXMessage([
            (Tags.MSG_TYPE, msg_type),
            (Tags.SENDER_COMP_ID, "acceptor"),
            (Tags.TARGET_COMP_ID, "initiator"),
            (Tags.MSG_SEQ_NUM, self.seq_num),
            (Tags.SENDING_TIME, "20240101-00:00:00.000"),
        ] + list(fields))
        self.seq_num += 1
        conn.sendall(message.encode("FIX.4.4"))

    def _serve(self):
        conn, _ = self.server.accept()
        conn.settimeout(5.0)
        parser = FIXParser()
        try:
            while True:
                message = parser.next_message()
                if message is None:
                    data = conn.recv(4096)
                    if not data:
                        return
                    parser.feed(data)
                    continue

                self.received.append(message)
                if message.msg_type == MsgTypes.LOGON:
                    self._send(conn, MsgTypes.LOGON, (Tags.ENCRYPT_METHOD, 0), (Tags.HEART_BT_INT, 30))
                    if self.disconnect_after_logon:
                        return
                    if self.test_request:
                        self._send(conn, MsgTypes.TEST_REQUEST, (Tags.TEST_REQ_ID, self.test_request))
                elif message.msg_type == "D":
                    self._send(conn, "8", (11, message.get(11)), (39, "0"))
                elif message.msg_type == MsgTypes.LOGOUT:
                    self._send(conn, MsgTypes.LOGOUT)
                    return
        except OSError:
            return
        finally:
            conn.close()

    def received_types(self):
        return [message.msg_type for message in self.received]

    def close(self):
        self.thread.join(timeout=5.0)
        self.server.close()


def no_reader():
    raise AssertionError("Interactive reader must not be created")


class TestConsoleSession:
    """Test complete scripted sessions."""

    def setup_method(self):
        """Set up test fixtures."""
        self.output = io.StringIO()
        self.config = FIXConfig(
            version=FIXVersion.FIX_4_4,
            sender_comp_id="initiator",
            target_comp_id="acceptor",
            heart_bt_int=30,
        )
        self.acceptor = None

    def teardown_method(self):
        """Stop the acceptor."""
        if self.acceptor is not None:
            self.acceptor.close()

    def open_client(self):
        return TerminalClient.open(
            self.acceptor.address,
            self.config,
            console=Console(file=self.output, width=200, highlight=False, markup=False, emoji=False, soft_wrap=True),
        )

    def test_order_round_trip(self, tmp_path):
        """Test sending an order, waiting for its report and exiting."""
        self.acceptor = Acceptor()
        client = self.open_client()

        client.run(["send D 11=order-1 55=ABC", "wait 8 5", "exit"], reader_factory=no_reader)
        self.acceptor.close()

        output = self.output.getvalue()
        assert "< send D 11=order-1 55=ABC\n" in output
        assert "|35=8|" in output
        assert "|11=order-1|" in output
        assert "error:" not in output

        assert client.closed
        assert client.session.closed
        assert self.acceptor.received_types() == ["A", "D", "5"]

        logon = self.acceptor.received[0]
        assert logon.get(Tags.BEGIN_STRING) == "FIX.4.4"
        assert logon.get(Tags.SENDER_COMP_ID) == "initiator"
        assert logon.get(Tags.MSG_SEQ_NUM) == "1"
        assert logon.get(Tags.HEART_BT_INT) == "30"
        assert logon.get(Tags.RESET_SEQ_NUM_FLAG) == "Y"

        path = client.messages.save_transcript(str(tmp_path))
        with open(path, 'r') as f:
            transcript = json.load(f)
        sent = [entry["msg_type"] for entry in transcript["interactions"] if entry["type"] == "outbound"]
        received = [entry["msg_type"] for entry in transcript["interactions"] if entry["type"] == "inbound"]
        assert sent == ["A", "D", "5"]
        assert received[:2] == ["A", "8"]

    def test_heartbeat_answers_test_request(self):
        """Test that a TestRequest is answered with its TestReqID."""
        self.acceptor = Acceptor(test_request="ping")
        client = self.open_client()

        client.run(["wait 1 5", "sleep 0.2", "exit"], reader_factory=no_reader)
        self.acceptor.close()

        heartbeats = [m for m in self.acceptor.received if m.msg_type == MsgTypes.HEARTBEAT]
        assert len(heartbeats) == 1
        assert heartbeats[0].get(Tags.TEST_REQ_ID) == "ping"

    def test_counterparty_disconnect(self):
        """Test that the console keeps running after the connection drops."""
        self.acceptor = Acceptor(disconnect_after_logon=True)
        client = self.open_client()

        client.run(["wait 8 5", "send 0", "messages"], reader_factory=no_reader)
        self.acceptor.close()

        output = self.output.getvalue()
        assert output.count("error: Connection closed\n") == 2
        assert "< messages\n" in output
        assert "Logon" in output
        assert client.closed

        events = [event["event_type"] for event in client.messages.events()]
        assert "error" in events
        assert events[-1] == "disconnection"
