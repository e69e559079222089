"""netexec: HTTP, UDP and SCTP connectivity test fixture."""

__version__ = "0.1.0"
