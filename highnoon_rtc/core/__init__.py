"""Relay transport, event bus and shared session lifecycle."""
