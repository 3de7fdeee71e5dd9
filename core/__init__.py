"""
ReelForge Core Components

Foundational infrastructure shared by the job pipeline:
- Configuration loaded from the environment
- Circuit breaker for provider resilience
- Logging setup
"""

from .circuit_breaker import CircuitBreaker, CircuitBreakerOpen, CircuitState
from .config import Config, get_config

__all__ = ["CircuitBreaker", "CircuitBreakerOpen", "CircuitState", "Config", "get_config"]
