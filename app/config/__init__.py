"""
Configuration module for the call bridge service.

This module provides centralized configuration management for the entire application,
including constants, logging setup, and environment-based settings.

Key components:
- constants: Protocol event names, default models and the localized user-facing
  sentences used by both the realtime and the fallback call paths.
- logging_config: Console and rotating-file logging for the application logger.
- settings: The ``AppSettings`` model read from environment variables, including
  the realtime rollout switch and percentage.

Usage examples:
```python
from app.config.settings import load_settings
from app.config.logging_config import configure_logging

settings = load_settings()
logger = configure_logging(settings.log_level)
logger.info(f"Realtime rollout at {settings.realtime_percentage}%")
```
"""
