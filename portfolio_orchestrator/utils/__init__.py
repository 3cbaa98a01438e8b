"""Utility helpers for portfolio orchestration."""
