"""Local-first media storage and session reconciliation for mock interviews."""

__version__ = "0.1.0"
