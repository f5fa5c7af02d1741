"""FOSS-Deck host daemon: pairing, authentication and remote control."""

__version__ = "0.1.0"
