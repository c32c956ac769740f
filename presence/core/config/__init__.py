"""
Configuration subsystem.

- Config: static, environment-driven settings (python-dotenv)
- ConfigManager: YAML-backed tunables with dot-notation access, imported
  from presence.core.config.config_manager (it depends on logging, which
  itself depends on Config)
"""

from presence.core.config.config import Config, Environment

__all__ = ["Config", "Environment"]
