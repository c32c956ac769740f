"""
Core infrastructure layer.

- config: Config (environment) and ConfigManager (YAML tunables)
- logging: structured logging, LogContext
- database: DatabaseService, ORM base, health monitor
- redis: RedisService client lifecycle
- event: in-process EventBus
- exceptions: infrastructure exception hierarchy

No business logic lives here. Import from the subpackages directly.
"""
