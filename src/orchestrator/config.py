#!/usr/bin/env python3
"""
Centralized Configuration Manager

Provides a single source of truth for orchestration configuration,
including environment variables, defaults, and validation.
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Optional, Dict

import pytz

from .env_loader import load_env_file, get_env_var, get_bool_env
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Cached run lists are served without a network call for this long
RUNS_FRESHNESS_SECONDS = 30

SUPPORTED_BACKENDS = ('http', 'memory')


@dataclass
class BackendConfig:
    """Analysis backend connection configuration."""
    kind: str = 'http'
    api_url: Optional[str] = None
    api_version: str = '/api/v1'
    api_token: Optional[str] = None
    push_url: Optional[str] = None
    memory_state_path: Optional[str] = None
    request_timeout: float = 10.0
    user_agent: str = 'AnalysisOrchestrator/1.0'


@dataclass
class StoreConfig:
    """Run store behaviour configuration."""
    runs_cache_ttl_seconds: int = RUNS_FRESHNESS_SECONDS
    operation_timeout_seconds: float = 30.0
    progress_poll_interval_seconds: float = 2.0
    auto_poll: bool = True


@dataclass
class ApplicationConfig:
    """Core application configuration."""
    display_timezone: str = 'UTC'

    # Logging
    log_level: str = 'INFO'
    verbose_logging: bool = False


@dataclass
class Config:
    """Master configuration container."""
    backend: BackendConfig
    store: StoreConfig
    app: ApplicationConfig

    # Environment info
    environment: str = field(default_factory=lambda: os.getenv('ENVIRONMENT', 'development'))

    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() in ['dev', 'development', 'local']

    def uses_memory_backend(self) -> bool:
        """Check if the in-process backend is selected."""
        return self.backend.kind == 'memory'

    def has_push(self) -> bool:
        """Check if push progress notifications are configured."""
        return bool(self.backend.push_url)


class ConfigManager:
    """Manages application configuration with validation and environment loading."""

    def __init__(self, env_file_path: str = ".env", load_env: bool = True):
        """
        Initialize configuration manager.

        Args:
            env_file_path: Path to .env file
            load_env: Whether to read the .env file at all
        """
        self._config: Optional[Config] = None
        self._env_file_path = env_file_path
        if load_env:
            load_env_file(env_file_path)

    def get_config(self, force_reload: bool = False) -> Config:
        """
        Get application configuration.

        Args:
            force_reload: Force reloading configuration from environment

        Returns:
            Complete configuration object
        """
        if self._config is None or force_reload:
            self._config = self._build_config()
        return self._config

    def _build_config(self) -> Config:
        """Build configuration from environment variables."""
        try:
            backend_config = BackendConfig(
                kind=get_env_var('ANALYSIS_BACKEND', 'http').strip().lower(),
                api_url=get_env_var('ANALYSIS_API_URL'),
                api_version=get_env_var('ANALYSIS_API_VERSION', '/api/v1'),
                api_token=get_env_var('ANALYSIS_API_TOKEN'),
                push_url=get_env_var('ANALYSIS_PUSH_URL'),
                memory_state_path=get_env_var('ANALYSIS_MEMORY_STATE'),
                request_timeout=float(get_env_var('REQUEST_TIMEOUT', '10')),
            )

            store_config = StoreConfig(
                runs_cache_ttl_seconds=int(get_env_var('RUNS_CACHE_TTL', str(RUNS_FRESHNESS_SECONDS))),
                operation_timeout_seconds=float(get_env_var('OPERATION_TIMEOUT', '30')),
                progress_poll_interval_seconds=float(get_env_var('PROGRESS_POLL_INTERVAL', '2')),
                auto_poll=get_bool_env('AUTO_POLL', True),
            )

            app_config = ApplicationConfig(
                display_timezone=get_env_var('DISPLAY_TIMEZONE', 'UTC'),
                log_level=get_env_var('LOG_LEVEL', 'INFO').upper(),
                verbose_logging=get_bool_env('VERBOSE_LOGGING', False),
            )
        except ValueError as e:
            raise ConfigurationError('environment', f"non-numeric value: {e}") from e

        config = Config(
            backend=backend_config,
            store=store_config,
            app=app_config
        )

        self._validate_config(config)
        return config

    def _validate_config(self, config: Config) -> None:
        """Validate configuration values."""
        errors = []

        if config.backend.kind not in SUPPORTED_BACKENDS:
            errors.append(f"ANALYSIS_BACKEND must be one of: {', '.join(SUPPORTED_BACKENDS)}")

        if config.backend.kind == 'http':
            url = config.backend.api_url or ''
            if not url:
                errors.append("ANALYSIS_API_URL is required for the http backend")
            elif not url.startswith(('http://', 'https://')):
                errors.append("ANALYSIS_API_URL must start with http:// or https://")

        if config.backend.push_url and not config.backend.push_url.startswith(('ws://', 'wss://')):
            errors.append("ANALYSIS_PUSH_URL must start with ws:// or wss://")

        # Validate numeric ranges
        if config.backend.request_timeout <= 0:
            errors.append("REQUEST_TIMEOUT must be positive")

        if config.store.operation_timeout_seconds <= 0:
            errors.append("OPERATION_TIMEOUT must be positive")

        if config.store.runs_cache_ttl_seconds < 0:
            errors.append("RUNS_CACHE_TTL must not be negative")

        if config.store.progress_poll_interval_seconds <= 0:
            errors.append("PROGRESS_POLL_INTERVAL must be positive")

        try:
            pytz.timezone(config.app.display_timezone)
        except pytz.UnknownTimeZoneError:
            errors.append(f"DISPLAY_TIMEZONE is not a known timezone: {config.app.display_timezone}")

        # Validate log level
        valid_log_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if config.app.log_level not in valid_log_levels:
            errors.append(f"LOG_LEVEL must be one of: {', '.join(valid_log_levels)}")

        if errors:
            raise ConfigurationError('environment', '; '.join(errors))

        logger.info("Configuration validation passed")

    def update_logging(self) -> None:
        """Configure logging based on current configuration."""
        config = self.get_config()

        # Set log level
        numeric_level = getattr(logging, config.app.log_level)
        logging.getLogger().setLevel(numeric_level)

        # Configure format
        if config.app.verbose_logging:
            format_str = '%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s'
        else:
            format_str = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

        # Update existing handlers
        for handler in logging.getLogger().handlers:
            handler.setLevel(numeric_level)
            formatter = logging.Formatter(format_str, datefmt='%Y-%m-%d %H:%M:%S')
            handler.setFormatter(formatter)

    def get_backend_status(self) -> Dict[str, bool]:
        """Get a summary of which backend features are configured."""
        config = self.get_config()
        return {
            'http': config.backend.kind == 'http' and bool(config.backend.api_url),
            'memory': config.uses_memory_backend(),
            'auth_token': bool(config.backend.api_token),
            'push': config.has_push(),
        }


# Global configuration manager instance
_config_manager: Optional[ConfigManager] = None


def get_config_manager() -> ConfigManager:
    """Get global configuration manager instance."""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager


def get_config() -> Config:
    """Get application configuration."""
    return get_config_manager().get_config()


def reset_config() -> None:
    """Reset configuration manager (useful for testing)."""
    global _config_manager
    _config_manager = None
