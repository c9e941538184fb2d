"""Metrics exposition."""
