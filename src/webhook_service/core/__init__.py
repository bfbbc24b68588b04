"""Shared exceptions."""
