"""Pydantic schemas shared across the reqpilot service."""
