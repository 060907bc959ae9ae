"""Feishu Morning Brief: RSS digests pushed to Feishu chats on a schedule."""

__version__ = "1.0.0"
