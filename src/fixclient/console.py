"""
Interactive console for the FIX terminal client.

This module drives one FIX session from a stream of command lines: a
pre-recorded script is replayed first, then lines are read from the
terminal until end-of-input. Each line is parsed into a command name and
arguments, resolved in the command registry and executed against the
session. Expected failures are reported and the console keeps running;
the session is closed exactly once however the console exits.
"""

import logging
import threading
from enum import Enum
from typing import Callable, Iterable, Iterator, Optional, Sequence, Tuple

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.history import InMemoryHistory
from rich.console import Console

from .commands import COMMANDS, Commands
from .exceptions import CommandError, ConnectionClosedError
from .messages import Messages
from .protocol import FIXConfig
from .session import Session


logger = logging.getLogger(__name__)

PROMPT = "> "


class DispatchResult(Enum):
    """Outcome of executing one line."""

    EXECUTED = "executed"
    SKIPPED = "skipped"
    UNKNOWN_COMMAND = "unknown_command"
    MALFORMED_ARGUMENTS = "malformed_arguments"
    CONNECTION_CLOSED = "connection_closed"


class CommandCompleter(Completer):
    """Completes command names in the first word of the line."""

    def __init__(self, names: Iterable[str]):
        self.names = sorted(names)

    def get_completions(self, document, complete_event):
        text = document.text_before_cursor.lstrip()
        if any(char.isspace() for char in text):
            return
        for name in self.names:
            if name.startswith(text):
                yield Completion(name, start_position=-len(text))


class ConsoleReader:
    """
    Blocking terminal line reader.

    read_line() returns None on end-of-input (Ctrl-D). Ctrl-C discards
    the line being edited.
    """

    def __init__(self, names: Iterable[str], prompt: str = PROMPT, input=None, output=None):
        self._session = PromptSession(
            prompt,
            completer=CommandCompleter(names),
            history=InMemoryHistory(),
            input=input,
            output=output,
        )

    def read_line(self) -> Optional[str]:
        try:
            return self._session.prompt()
        except EOFError:
            return None
        except KeyboardInterrupt:
            return ""


class LineSource:
    """
    One ordered stream of input lines.

    The script is replayed first, each line echoed as "< line". Then
    lines are read from a reader created on first use until it signals
    end-of-input. The stream stops as soon as is_closed() turns true,
    checked before every line.
    """

    def __init__(
        self,
        script: Sequence[str],
        reader_factory: Callable[[], "ConsoleReader"],
        printf: Callable[..., None],
        is_closed: Callable[[], bool],
    ):
        self.script = list(script)
        self._reader_factory = reader_factory
        self._printf = printf
        self._is_closed = is_closed

    def __iter__(self) -> Iterator[str]:
        if not self.script:
            self._printf("Type 'help' for help.\n")

        for line in self.script:
            if self._is_closed():
                return
            self._printf("< %s\n", line)
            yield line

        if self._is_closed():
            return

        reader = self._reader_factory()
        while not self._is_closed():
            line = reader.read_line()
            if line is None:
                return
            yield line


class TerminalClient:
    """
    Console context: the session, the message sink, the command registry
    and the operator console.

    The closed flag only ever goes from False to True, through close().
    """

    def __init__(
        self,
        messages: Messages,
        session: Session,
        commands: Commands = COMMANDS,
        console: Optional[Console] = None,
    ):
        self._messages = messages
        self._session = session
        self._commands = commands
        self._console = console or Console(highlight=False, markup=False, emoji=False, soft_wrap=True)
        self._closed = False
        self._close_lock = threading.Lock()

    @classmethod
    def open(
        cls,
        address: Tuple[str, int],
        config: FIXConfig,
        commands: Commands = COMMANDS,
        console: Optional[Console] = None,
    ) -> "TerminalClient":
        """
        Open a session to the given address.

        Raises:
            ConnectionError: If the connection cannot be established
        """
        messages = Messages()
        session = Session.open(address, config, messages)
        return cls(messages, session, commands, console)

    @property
    def messages(self) -> Messages:
        return self._messages

    @property
    def session(self) -> Session:
        return self._session

    @property
    def commands(self) -> Commands:
        return self._commands

    @property
    def console(self) -> Console:
        return self._console

    @property
    def closed(self) -> bool:
        return self._closed

    def run(self, lines: Sequence[str], reader_factory: Optional[Callable[[], ConsoleReader]] = None) -> None:
        """
        Execute the script lines, then interactive lines, until the
        session is closed or input ends. The session is closed on return.
        """
        if reader_factory is None:
            reader_factory = lambda: ConsoleReader(self._commands.names())

        source = LineSource(lines, reader_factory, self.printf, lambda: self.closed)
        try:
            for line in source:
                if self.closed:
                    break
                self.execute(line)
        finally:
            self.close()

    def execute(self, line: str) -> DispatchResult:
        """
        Parse and execute one line.

        Unknown commands, malformed arguments and a closed connection are
        reported to the operator. Any other exception propagates.
        """
        text = line.strip()
        if text.startswith("#"):
            return DispatchResult.SKIPPED

        tokens = text.split()
        if not tokens:
            return DispatchResult.SKIPPED

        command = self._commands.find(tokens[0])
        if command is None:
            self.printf("error: Unknown command\n")
            return DispatchResult.UNKNOWN_COMMAND

        try:
            command.execute(self, tokens[1:])
        except CommandError as e:
            logger.debug(f"{command.name}: {e}")
            self.printf("Usage: %s\n", command.usage)
            return DispatchResult.MALFORMED_ARGUMENTS
        except ConnectionClosedError as e:
            logger.debug(f"{command.name}: {e}")
            self.printf("error: Connection closed\n")
            return DispatchResult.CONNECTION_CLOSED

        return DispatchResult.EXECUTED

    def close(self) -> None:
        """Close the session; later calls do nothing."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
            self._session.close()

    def printf(self, format: str, *args) -> None:
        text = format % args if args else format
        self._console.print(text, end="")

    def __enter__(self) -> "TerminalClient":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()
