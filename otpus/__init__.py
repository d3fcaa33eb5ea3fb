"""Telegram relay for tenant SMS and voice one-time passcodes."""

__version__ = "0.1.0"
