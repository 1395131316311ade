"""Event loop and expiry contracts, structured test logs and packet readiness gates."""

__version__ = "0.1.0"