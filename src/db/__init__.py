"""Persistence layer: engine, sessions, models and atomic write helpers."""
