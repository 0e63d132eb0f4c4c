import re
from collections import namedtuple
from enum import Enum


class CommandKind(str, Enum):
    REFRESH = "refresh"
    CLEAR = "clear"
    ADMIN = "admin"
    SETTINGS = "settings"
    HELP = "help"
    KILL_PORT = "kill"
    EXPORT = "export"
    NO_MATCH = "no_match"


Command = namedtuple("Command", ["kind", "port", "format"], defaults=(None, None))

NO_MATCH = Command(CommandKind.NO_MATCH)

EXPORT_FORMATS = ("json", "csv")

_KEYWORDS = {
    "admin": CommandKind.ADMIN,
    "sudo": CommandKind.ADMIN,
    "refresh": CommandKind.REFRESH,
    "r": CommandKind.REFRESH,
    "clear": CommandKind.CLEAR,
    "c": CommandKind.CLEAR,
    "settings": CommandKind.SETTINGS,
    "config": CommandKind.SETTINGS,
    "help": CommandKind.HELP,
    "?": CommandKind.HELP,
}

_DIGITS_RE = re.compile(r"[0-9]+")
_PORT_INPUT_RE = re.compile(r"(?:kill\s+)?([0-9]+)")


def parse_port_literal(text):
    """Return the port number typed as `text`, or None."""
    s = (text or "").strip()
    if not _DIGITS_RE.fullmatch(s):
        return None
    port = int(s)
    if 1 <= port <= 65535:
        return port
    return None


def parse_command(text):
    """
    Parse one line of operator input.

    Matching is on whole words, so partial keywords ("ki", "ref") are
    NO_MATCH and stay a plain search.
    """
    words = (text or "").strip().lower().split()
    if not words:
        return NO_MATCH
    head, args = words[0], words[1:]

    if head in _KEYWORDS:
        return Command(_KEYWORDS[head]) if not args else NO_MATCH

    if head == "kill":
        if len(args) != 1:
            return NO_MATCH
        port = parse_port_literal(args[0])
        if port is None:
            return NO_MATCH
        return Command(CommandKind.KILL_PORT, port=port)

    if head == "export":
        if not args:
            return Command(CommandKind.EXPORT, format="json")
        if len(args) == 1 and args[0] in EXPORT_FORMATS:
            return Command(CommandKind.EXPORT, format=args[0])
        return NO_MATCH

    return NO_MATCH


def parse_port_number(text):
    """
    Number typed as a port, alone or after "kill", without the range check.

    Lets out-of-range input still be reported as a port that is not in use.
    """
    m = _PORT_INPUT_RE.fullmatch((text or "").strip().lower())
    return int(m.group(1)) if m else None
