"""
mlti - run commands concurrently

A small process multiplexer designed for:
- Running many commands under a concurrency cap
- Interleaved or grouped output from every process
- Kill cascades when one process exits or fails to start
- Bounded restart-on-spawn-failure
"""

__version__ = "0.1.0"
