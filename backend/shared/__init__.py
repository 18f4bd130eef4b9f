"""
Shared module for code used by the WS Gateway and the CLI.

STRUCTURE:
- shared.config: Configuration
  - settings.py: Environment config (pydantic-settings)
  - logging.py: Structured logging

- shared.infrastructure: Broker access and logging context
  - correlation.py: Per-connection id for log records
  - events/: Chat message schema, Redis pool, publisher, health checks

- shared.utils: Utilities
  - exceptions.py: Relay error hierarchy

IMPORT EXAMPLES:
    from shared.config.settings import get_settings
    from shared.config.logging import get_logger
    from shared.infrastructure.events import BrokerPool, ChatPublisher, Message
    from shared.utils.exceptions import BrokerError, CodecError
"""
