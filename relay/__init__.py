"""Gmail push relay: forwards qualifying new messages to a downstream webhook."""

__version__ = "1.0.0"
