"""asyncpg repositories."""
