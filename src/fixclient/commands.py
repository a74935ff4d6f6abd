"""
Console commands for the FIX terminal client.

Every command shares one invocation contract: execute(client, arguments),
where arguments are the whitespace-separated tokens following the command
name. A command raises CommandError when its arguments are malformed and
lets ConnectionClosedError through when the session is unusable.
"""

import math
import re
import time
from datetime import datetime
from types import MappingProxyType
from typing import TYPE_CHECKING, Dict, FrozenSet, Iterable, Iterator, List, Optional, Tuple

from rich import box
from rich.table import Table

from .exceptions import CommandError, ConnectionClosedError, ProtocolError
from .protocol import FIXMessage, Tags, get_msg_type_name
from .session import HEADER_TAGS

if TYPE_CHECKING:
    from .console import TerminalClient


class Command:
    """Base class for console commands."""

    name: str = ""
    usage: str = ""
    description: str = ""
    aliases: Tuple[str, ...] = ()

    def execute(self, client: "TerminalClient", arguments: List[str]) -> None:
        raise NotImplementedError("Command must implement execute()")

    @property
    def label(self) -> str:
        return ", ".join((self.name,) + self.aliases)


def parse_seconds(value: str) -> float:
    """Parse a non-negative number of seconds or raise CommandError."""
    try:
        seconds = float(value)
    except ValueError:
        raise CommandError(f"Invalid number of seconds: {value}")
    if not math.isfinite(seconds) or seconds < 0:
        raise CommandError(f"Invalid number of seconds: {value}")
    return seconds


# ASCII digits only
NUMBER = re.compile(r"[0-9]+")


def parse_count(value: str) -> int:
    """Parse a positive count or raise CommandError."""
    if not NUMBER.fullmatch(value) or int(value) == 0:
        raise CommandError(f"Invalid count: {value}")
    return int(value)


def parse_field(argument: str) -> Tuple[int, str]:
    """Parse a <tag>=<value> argument or raise CommandError."""
    tag, sep, value = argument.partition("=")
    if not sep or not NUMBER.fullmatch(tag) or not value:
        raise CommandError(f"Malformed field: {argument}")
    if int(tag) in HEADER_TAGS:
        raise CommandError(f"Header field cannot be set: {tag}")
    return int(tag), value


class HelpCommand(Command):
    name = "help"
    usage = "help [<command>]"
    description = "Display the help"

    def execute(self, client: "TerminalClient", arguments: List[str]) -> None:
        if len(arguments) > 1:
            raise CommandError("Too many arguments")

        if arguments:
            command = client.commands.find(arguments[0])
            if command is None:
                raise CommandError(f"Unknown command: {arguments[0]}")
            client.printf("Usage: %s\n\n  %s\n\n", command.usage, command.description)
            return

        width = max((len(command.label) for command in client.commands), default=0)

        client.printf("Commands:\n")
        for command in client.commands:
            client.printf("  %-*s  %s\n", width, command.label, command.description)
        client.printf("\nType 'help <command>' for command specific help.\n")


class SendCommand(Command):
    name = "send"
    usage = "send <msg-type> [<tag>=<value> ...]"
    description = "Send a message with the given MsgType(35) and body fields"

    def execute(self, client: "TerminalClient", arguments: List[str]) -> None:
        if not arguments:
            raise CommandError("MsgType missing")

        message = FIXMessage([(Tags.MSG_TYPE, arguments[0])])
        for argument in arguments[1:]:
            tag, value = parse_field(argument)
            message.add(tag, value)

        try:
            client.session.send(message)
        except ProtocolError as e:
            client.printf("error: %s\n", e)


class WaitCommand(Command):
    name = "wait"
    usage = "wait <msg-type> [<timeout>]"
    description = "Wait for a message with the given MsgType(35)"

    def execute(self, client: "TerminalClient", arguments: List[str]) -> None:
        if not 1 <= len(arguments) <= 2:
            raise CommandError("Wrong number of arguments")

        msg_type = arguments[0]
        timeout = parse_seconds(arguments[1]) if len(arguments) == 2 else None

        entry = client.messages.wait_for(msg_type, timeout)
        if entry is None:
            if client.session.closed:
                raise ConnectionClosedError("Session closed")
            client.printf("error: Timed out waiting for %s\n", get_msg_type_name(msg_type))
            return

        client.printf("%s\n", entry["message"])


class MessagesCommand(Command):
    name = "messages"
    usage = "messages [<count>]"
    description = "Display received messages, the most recent last"

    def execute(self, client: "TerminalClient", arguments: List[str]) -> None:
        if len(arguments) > 1:
            raise CommandError("Too many arguments")

        count: Optional[int] = None
        if arguments:
            count = parse_count(arguments[0])

        received = client.messages.received()
        if not received:
            client.printf("No messages received\n")
            return

        first = 0 if count is None else max(len(received) - count, 0)

        table = Table(show_header=True, header_style="bold", box=box.SIMPLE)
        table.add_column("#", justify="right")
        table.add_column("Time")
        table.add_column("MsgType")
        table.add_column("MsgSeqNum", justify="right")
        table.add_column("Message", overflow="fold")

        for index in range(first, len(received)):
            entry = received[index]
            table.add_row(
                str(index + 1),
                _format_time(entry["timestamp"]),
                entry["msg_type_name"],
                str(entry["msg_seq_num"] if entry["msg_seq_num"] is not None else ""),
                entry["message"],
            )

        client.console.print(table)


class EventsCommand(Command):
    name = "events"
    usage = "events"
    description = "Display session events"

    def execute(self, client: "TerminalClient", arguments: List[str]) -> None:
        if arguments:
            raise CommandError("Too many arguments")

        events = client.messages.events()
        if not events:
            client.printf("No events\n")
            return

        for event in events:
            client.printf(
                "%s  %-16s %s\n",
                _format_time(event["timestamp"]),
                event["event_type"],
                event["description"],
            )


class SleepCommand(Command):
    name = "sleep"
    usage = "sleep <seconds>"
    description = "Pause for the given number of seconds"

    def execute(self, client: "TerminalClient", arguments: List[str]) -> None:
        if len(arguments) != 1:
            raise CommandError("Wrong number of arguments")

        time.sleep(parse_seconds(arguments[0]))


class ExitCommand(Command):
    name = "exit"
    usage = "exit"
    description = "Close the session and exit"
    aliases = ("quit",)

    def execute(self, client: "TerminalClient", arguments: List[str]) -> None:
        if arguments:
            raise CommandError("Too many arguments")

        client.close()


def _format_time(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp).strftime("%H:%M:%S.%f")[:-3]


class Commands:
    """
    Immutable mapping from command name to command.

    Aliases resolve to the same command as its name. Lookup is exact and
    case-sensitive; an unknown name yields None.
    """

    def __init__(self, commands: Iterable[Command]):
        table: Dict[str, Command] = {}
        ordered = []
        for command in commands:
            for name in (command.name,) + tuple(command.aliases):
                if name in table:
                    raise ValueError(f"Duplicate command name: {name}")
                table[name] = command
            ordered.append(command)

        self._commands = MappingProxyType(table)
        self._ordered = tuple(sorted(ordered, key=lambda command: command.name))

    def find(self, name: str) -> Optional[Command]:
        return self._commands.get(name)

    def names(self) -> FrozenSet[str]:
        return frozenset(self._commands)

    def __iter__(self) -> Iterator[Command]:
        return iter(self._ordered)

    def __len__(self) -> int:
        return len(self._ordered)


COMMANDS = Commands([
    HelpCommand(),
    SendCommand(),
    WaitCommand(),
    MessagesCommand(),
    EventsCommand(),
    SleepCommand(),
    ExitCommand(),
])
