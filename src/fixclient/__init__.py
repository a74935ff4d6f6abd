"""
FIX session console: protocol codec, session, message sink, commands and
the console run loop.
"""

from .console import DispatchResult, TerminalClient
from .protocol import FIXConfig, FIXMessage, FIXVersion

__all__ = ["DispatchResult", "TerminalClient", "FIXConfig", "FIXMessage", "FIXVersion"]
