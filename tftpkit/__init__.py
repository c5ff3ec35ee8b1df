"""TFTP client and server with option negotiation."""

__version__ = "0.1.0"
__all__ = ["packets", "negotiation", "tracelog", "transfer", "client", "server"]