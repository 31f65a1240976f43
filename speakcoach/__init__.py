"""Speaking coach: recording analysis pipeline and progress aggregation."""

__version__ = "0.1.0"
