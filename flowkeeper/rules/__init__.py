"""Automation rule models, indexing, persistence and portability."""
