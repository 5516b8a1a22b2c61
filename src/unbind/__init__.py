"""Find listening ports, see who owns them, and free them."""

__version__ = "0.1.0"
