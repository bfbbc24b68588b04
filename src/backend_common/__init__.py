"""Shared building blocks for the aiohttp services."""
