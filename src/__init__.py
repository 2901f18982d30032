"""Tutor progress engine."""
