"""Publish/subscribe messaging core: messages, subscriptions and network protocols."""

__version__ = "0.1.0"