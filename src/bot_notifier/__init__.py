"""Bot notifier - chat-bot webhook replies, templated notifications and delivery auditing."""

__version__ = "0.1.0"
