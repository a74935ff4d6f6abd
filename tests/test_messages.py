"""
Tests for the message sink.
"""

import json
import tempfile
import threading
import time
from pathlib import Path
from src.fixclient.messages import Messages
from src.fixclient.protocol import FIXMessage, MsgTypes, Tags


def make_message(msg_type: str, msg_seq_num: int = 1, *fields) -> FIXMessage:
    return FIXMessage([(Tags.MSG_TYPE, msg_type), (Tags.MSG_SEQ_NUM, msg_seq_num)] + list(fields))


class TestMessages:
    """Test cases for Messages class."""

    def setup_method(self):
        """Set up test fixtures."""
        self.messages = Messages("test_session")

    def test_initialization(self):
        """Test sink initialization."""
        assert self.messages.session_id == "test_session"
        assert self.messages.interactions == []
        assert self.messages.start_time > 0
        assert not self.messages.closed

    def test_auto_session_id(self):
        """Test automatic session ID generation."""
        messages = Messages()
        assert messages.session_id.startswith("session_")
        assert len(messages.session_id) > 8

    def test_record_inbound(self):
        """Test recording a received message."""
        self.messages.record_inbound(make_message(MsgTypes.LOGON, 1))

        assert len(self.messages.interactions) == 1
        entry = self.messages.interactions[0]

        assert entry["type"] == "inbound"
        assert entry["direction"] == "server -> client"
        assert entry["msg_type"] == "A"
        assert entry["msg_type_name"] == "Logon"
        assert entry["msg_seq_num"] == 1
        assert entry["message"] == "35=A|34=1"
        assert "timestamp" in entry
        assert "relative_time" in entry

    def test_record_outbound(self):
        """Test recording a sent message."""
        self.messages.record_outbound(make_message("D", 2, (11, "order-1")))

        entry = self.messages.interactions[0]
        assert entry["type"] == "outbound"
        assert entry["direction"] == "client -> server"
        assert entry["msg_type_name"] == "NewOrderSingle"
        assert entry["message"] == "35=D|34=2|11=order-1"

    def test_record_event(self):
        """Test recording an event."""
        details = {"host": "localhost", "port": 4000}
        self.messages.record_event("connection", "Connected", details)

        entry = self.messages.interactions[0]
        assert entry["type"] == "event"
        assert entry["event_type"] == "connection"
        assert entry["description"] == "Connected"
        assert entry["details"] == details

    def test_record_event_without_details(self):
        """Test recording an event without details."""
        self.messages.record_event("disconnection", "Session closed")
        assert self.messages.interactions[0]["details"] == {}

    def test_received_and_events(self):
        """Test filtering received messages and events."""
        self.messages.record_outbound(make_message(MsgTypes.LOGON, 1))
        self.messages.record_inbound(make_message(MsgTypes.LOGON, 1))
        self.messages.record_event("logon", "Logon accepted")

        assert [e["msg_type"] for e in self.messages.received()] == ["A"]
        assert [e["event_type"] for e in self.messages.events()] == ["logon"]

    def test_wait_for_message_already_received(self):
        """Test that a message received before waiting counts."""
        self.messages.record_inbound(make_message("8", 2))
        entry = self.messages.wait_for("8", timeout=0)
        assert entry["msg_seq_num"] == 2

    def test_wait_for_consumes_in_order(self):
        """Test that each wait takes the next matching message."""
        self.messages.record_inbound(make_message("8", 2))
        self.messages.record_inbound(make_message("0", 3))
        self.messages.record_inbound(make_message("8", 4))

        assert self.messages.wait_for("8", timeout=0)["msg_seq_num"] == 2
        assert self.messages.wait_for("8", timeout=0)["msg_seq_num"] == 4
        assert self.messages.wait_for("8", timeout=0) is None

    def test_wait_for_interleaved_types(self):
        """Test that waiting for one type leaves earlier messages of another."""
        self.messages.record_inbound(make_message(MsgTypes.HEARTBEAT, 1))
        self.messages.record_inbound(make_message(MsgTypes.LOGON, 2))
        self.messages.record_inbound(make_message(MsgTypes.HEARTBEAT, 3))

        assert self.messages.wait_for(MsgTypes.LOGON, timeout=0)["msg_seq_num"] == 2
        assert self.messages.wait_for(MsgTypes.HEARTBEAT, timeout=0)["msg_seq_num"] == 1
        assert self.messages.wait_for(MsgTypes.HEARTBEAT, timeout=0)["msg_seq_num"] == 3
        assert self.messages.wait_for(MsgTypes.LOGON, timeout=0) is None

    def test_wait_for_ignores_outbound(self):
        """Test that sent messages never satisfy a wait."""
        self.messages.record_outbound(make_message("8", 2))
        assert self.messages.wait_for("8", timeout=0) is None

    def test_wait_for_timeout(self):
        """Test waiting without a matching message."""
        start = time.monotonic()
        assert self.messages.wait_for("8", timeout=0.1) is None
        assert time.monotonic() - start >= 0.05

    def test_wait_for_message_from_other_thread(self):
        """Test that a waiter wakes up on a message from another thread."""
        timer = threading.Timer(0.05, self.messages.record_inbound, args=[make_message("8", 2)])
        timer.start()
        try:
            entry = self.messages.wait_for("8", timeout=5.0)
        finally:
            timer.cancel()
        assert entry is not None
        assert entry["msg_type"] == "8"

    def test_wait_for_returns_when_closed(self):
        """Test that closing the sink releases waiters."""
        timer = threading.Timer(0.05, self.messages.mark_closed)
        timer.start()
        try:
            assert self.messages.wait_for("8") is None
        finally:
            timer.cancel()
        assert self.messages.closed

    def test_get_summary(self):
        """Test transcript summary generation."""
        self.messages.record_outbound(make_message(MsgTypes.LOGON, 1))
        self.messages.record_inbound(make_message(MsgTypes.LOGON, 1))
        self.messages.record_event("logon", "Logon accepted")

        summary = self.messages.get_summary()

        assert summary["session_id"] == "test_session"
        assert summary["total_interactions"] == 3
        assert summary["sent"] == 1
        assert summary["received"] == 1
        assert summary["events"] == 1
        assert summary["msg_types_sent"] == ["A"]
        assert summary["msg_types_received"] == ["A"]
        assert "duration" in summary

    def test_save_transcript(self):
        """Test saving the transcript to a file."""
        self.messages.record_outbound(make_message(MsgTypes.LOGON, 1))
        self.messages.record_inbound(make_message(MsgTypes.LOGON, 1))

        with tempfile.TemporaryDirectory() as temp_dir:
            filepath = self.messages.save_transcript(temp_dir)

            assert Path(filepath).exists()
            assert filepath.endswith("test_session.json")

            with open(filepath, 'r') as f:
                data = json.load(f)

            assert data["session_id"] == "test_session"
            assert data["total_interactions"] == 2
            assert len(data["interactions"]) == 2
            assert data["metadata"]["client_version"] == "1.0.0"

    def test_save_transcript_creates_directory(self):
        """Test that save_transcript creates the output directory."""
        with tempfile.TemporaryDirectory() as temp_dir:
            target = Path(temp_dir) / "sessions" / "nested"
            filepath = self.messages.save_transcript(str(target))

            assert target.exists()
            assert Path(filepath).exists()
