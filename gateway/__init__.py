"""Conversation gateway: cached, licensed access to upstream assistants."""
