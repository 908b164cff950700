"""Flowkeeper: event-driven and scheduled automation rules for task boards."""

__version__ = "0.1.0"
