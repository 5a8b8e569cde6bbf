"""Child process management for Unison.

Unison runs with ``-dumbtty`` in its own process group, its output merged
onto one pipe and forwarded in arbitrary chunks.
"""

from unisonui.proc.process import ProcessStatus, UnisonProcess

__all__ = [
    "ProcessStatus",
    "UnisonProcess",
]
