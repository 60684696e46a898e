"""Visualization Package."""
