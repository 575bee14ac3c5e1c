"""Pioneer Tracker - on-chain pioneer wallet detection and signalling."""

__version__ = "0.1.0"
