"""SoulScan - music library scan and metadata sync engine."""

__version__ = "0.1.0"
