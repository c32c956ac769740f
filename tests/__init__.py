"""
Presence service tests.

- tests/unit/: SQLite-backed and mocked, no external services
- tests/integration/: PostgreSQL and Redis through testcontainers; skipped
  when Docker is unavailable

Select with the markers declared in pyproject.toml (`-m unit`, `-m integration`).
"""
