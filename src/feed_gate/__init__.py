"""feed-gate: pay-per-month access to a content feed, settled in bitcoin."""

__version__ = "0.1.0"
