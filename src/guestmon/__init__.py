"""guestmon - per-guest OS metrics agent."""

__version__ = "0.1.0"
