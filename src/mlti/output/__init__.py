"""Output rendering and sequencing."""

from .formatter import LineRenderer, format_delay
from .sequencer import OutputSequencer

__all__ = ["LineRenderer", "OutputSequencer", "format_delay"]
