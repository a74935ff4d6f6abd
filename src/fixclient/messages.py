"""
Message sink for the FIX terminal client.

This module keeps a transcript of every message exchanged on the session
and of session events, so that commands can inspect and wait for
received messages and the transcript can be saved for later analysis.
"""

import json
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Set
from .protocol import FIXMessage, get_msg_type_name


class Messages:
    """
    Records all messages and events of a FIX session.

    The session's receiver thread writes into the sink while the console
    thread reads from it, so every access goes through one condition.
    """

    def __init__(self, session_id: Optional[str] = None):
        self.session_id = session_id or self._generate_session_id()
        self.interactions: List[Dict[str, Any]] = []
        self.start_time = time.time()
        self._condition = threading.Condition()
        self._consumed: Set[int] = set()
        self._closed = False

    def _generate_session_id(self) -> str:
        """Generate a unique session ID based on timestamp."""
        return f"session_{datetime.now().strftime('%Y%m%d_%H%M%S')}"

    def _message_entry(self, kind: str, direction: str, message: FIXMessage) -> Dict[str, Any]:
        return {
            "timestamp": time.time(),
            "relative_time": time.time() - self.start_time,
            "type": kind,
            "direction": direction,
            "msg_type": message.msg_type,
            "msg_type_name": get_msg_type_name(message.msg_type),
            "msg_seq_num": message.msg_seq_num,
            "message": str(message),
        }

    def _append(self, entry: Dict[str, Any]) -> None:
        with self._condition:
            self.interactions.append(entry)
            self._condition.notify_all()

    def record_outbound(self, message: FIXMessage) -> None:
        """
        Record a message sent to the counterparty.

        Args:
            message: The message as it was sent, header included
        """
        self._append(self._message_entry("outbound", "client -> server", message))

    def record_inbound(self, message: FIXMessage) -> None:
        """
        Record a message received from the counterparty.

        Args:
            message: The decoded message
        """
        self._append(self._message_entry("inbound", "server -> client", message))

    def record_event(self, event_type: str, description: str, details: Dict[str, Any] = None) -> None:
        """
        Record a session event (logon, disconnection, error, etc.).

        Args:
            event_type: Type of event
            description: Description of the event
            details: Additional event details
        """
        self._append({
            "timestamp": time.time(),
            "relative_time": time.time() - self.start_time,
            "type": "event",
            "event_type": event_type,
            "description": description,
            "details": details or {},
        })

    def mark_closed(self) -> None:
        """Wake up every waiter; the session will not deliver more messages."""
        with self._condition:
            self._closed = True
            self._condition.notify_all()

    @property
    def closed(self) -> bool:
        with self._condition:
            return self._closed

    def received(self) -> List[Dict[str, Any]]:
        with self._condition:
            return [i for i in self.interactions if i["type"] == "inbound"]

    def events(self) -> List[Dict[str, Any]]:
        with self._condition:
            return [i for i in self.interactions if i["type"] == "event"]

    def _find_received(self, msg_type: str) -> Optional[int]:
        for index, entry in enumerate(self.interactions):
            if index in self._consumed:
                continue
            if entry["type"] == "inbound" and entry["msg_type"] == msg_type:
                return index
        return None

    def wait_for(self, msg_type: str, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """
        Wait for a received message of the given type.

        Each call consumes the first matching message not returned by an
        earlier call, so a message that arrived before the call still
        counts.

        Args:
            msg_type: MsgType(35) value to wait for
            timeout: Seconds to wait, or None to wait until the session closes

        Returns:
            The matching entry, or None on timeout or when the session closed
        """
        with self._condition:
            self._condition.wait_for(
                lambda: self._closed or self._find_received(msg_type) is not None,
                timeout,
            )
            index = self._find_received(msg_type)
            if index is None:
                return None
            self._consumed.add(index)
            return self.interactions[index]

    def save_transcript(self, output_dir: str = "sessions") -> str:
        """
        Save the recorded transcript to a JSON file.

        Args:
            output_dir: Directory to save transcript files

        Returns:
            str: Path to the saved transcript file
        """
        output_path = Path(output_dir)
        output_path.mkdir(parents=True, exist_ok=True)

        with self._condition:
            interactions = list(self.interactions)

        transcript = {
            "session_id": self.session_id,
            "start_time": self.start_time,
            "end_time": time.time(),
            "duration": time.time() - self.start_time,
            "total_interactions": len(interactions),
            "metadata": {
                "client_version": "1.0.0",
                "recorded_at": datetime.now().isoformat(),
            },
            "interactions": interactions,
        }

        filepath = output_path / f"{self.session_id}.json"
        with open(filepath, 'w', encoding='utf-8') as f:
            json.dump(transcript, f, indent=2, ensure_ascii=False)

        return str(filepath)

    def get_summary(self) -> Dict[str, Any]:
        """
        Get a summary of the current transcript.

        Returns:
            Dict containing transcript statistics
        """
        with self._condition:
            interactions = list(self.interactions)

        outbound = [i for i in interactions if i["type"] == "outbound"]
        inbound = [i for i in interactions if i["type"] == "inbound"]
        events = [i for i in interactions if i["type"] == "event"]

        return {
            "session_id": self.session_id,
            "duration": time.time() - self.start_time,
            "total_interactions": len(interactions),
            "sent": len(outbound),
            "received": len(inbound),
            "events": len(events),
            "msg_types_sent": [i["msg_type"] for i in outbound],
            "msg_types_received": [i["msg_type"] for i in inbound],
        }
