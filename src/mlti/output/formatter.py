"""
Line renderer - turns bus messages into terminal lines.

Provides rendering utilities without any ordering logic; the sequencer
decides when a message is rendered.
"""

import time
from typing import Optional

from rich.console import Console
from rich.style import Style
from rich.text import Text

from ..core.messages import Message, MessageType, SenderKind


ERROR_COLOR = "red"


def format_delay(ms: int) -> str:
    """
    Human-readable delay.

    500 -> "500 milliseconds", 1000 -> "1 second",
    125000 -> "2 minutes and 5 seconds".
    """
    if ms < 1000:
        return _plural(ms, "millisecond")

    seconds = ms // 1000
    hours, remainder = divmod(seconds, 3600)
    minutes, seconds = divmod(remainder, 60)

    parts = []
    if hours:
        parts.append(_plural(hours, "hour"))
    if minutes:
        parts.append(_plural(minutes, "minute"))
    if seconds:
        parts.append(_plural(seconds, "second"))

    if len(parts) == 1:
        return parts[0]
    return ", ".join(parts[:-1]) + " and " + parts[-1]


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}" if count == 1 else f"{count} {unit}s"


class LineRenderer:
    """
    Renders messages to a rich Console.

    Features:
    - Raw mode (process output only, undecorated)
    - Per-task colored name prefixes
    - Banner style for top-level status lines
    - Optional timestamp prefix
    """

    def __init__(
        self,
        console: Optional[Console] = None,
        raw: bool = False,
        no_color: bool = False,
        timings: bool = False,
        timestamp_format: str = "%Y-%m-%d %H:%M:%S",
    ):
        self.console = console or Console(
            highlight=False,
            markup=False,
            emoji=False,
            no_color=no_color,
        )
        self.raw = raw
        self.no_color = no_color
        self.timings = timings
        self.timestamp_format = timestamp_format

    def render(self, message: Message) -> None:
        """Print a single message, if it has a visible form."""
        line = self.format(message)
        if line is not None:
            self.console.print(line, soft_wrap=True, highlight=False, markup=False, emoji=False)

    def banner(self, text: str, error: bool = False) -> None:
        """Print a top-level status line outside the message stream."""
        if self.raw:
            return
        self.console.print(
            self._styled(text, self._style(ERROR_COLOR if error else None, bold=True)),
            soft_wrap=True,
        )

    def format(self, message: Message) -> Optional[Text]:
        """Build the Text for a message, or None if it renders to nothing."""
        if message.is_control or message.type == MessageType.KILL:
            return None

        kind = message.sender.kind
        if self.raw:
            if kind == SenderKind.PROCESS and message.type == MessageType.TEXT:
                return Text(message.data)
            return None

        is_error = message.type == MessageType.ERROR
        color = ERROR_COLOR if is_error else message.color
        line = Text()

        if self.timings:
            stamp = time.strftime(self.timestamp_format, time.localtime(message.timestamp))
            line.append(f"[{stamp}] ")

        if kind in (SenderKind.MAIN, SenderKind.SCHEDULER):
            line.append_text(self._styled(message.data, self._style(color, bold=True)))
            return line

        line.append("[")
        line.append_text(self._styled(message.sender.name, self._style(message.color)))
        line.append("]: ")
        if kind == SenderKind.TASK or is_error:
            line.append_text(self._styled(message.data, self._style(color, bold=True)))
        else:
            line.append(message.data)
        return line

    def _style(self, color: Optional[str], bold: bool = False) -> Style:
        if self.no_color:
            return Style(bold=bold)
        return Style(color=color, bold=bold)

    def _styled(self, text: str, style: Style) -> Text:
        return Text(text, style=style)
