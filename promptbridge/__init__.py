"""promptbridge: automated prompt submission into creative web platforms."""

__version__ = "0.3.0"
