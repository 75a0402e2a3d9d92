"""Commission integrity checks and automatic affiliate payouts."""

__version__ = "1.0.0"
