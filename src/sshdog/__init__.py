"""sshdog — portable SSH daemon bootstrap."""

__version__ = "0.3.0"
