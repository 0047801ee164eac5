"""Two-currency trading ledger: limit matching, recurring plans, cache mirror and notifications."""
__version__ = "0.1.0"
