"""zkvault: client-side key management and encryption for a zero-knowledge password vault."""

__version__ = "0.1.0"
