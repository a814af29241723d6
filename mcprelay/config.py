# -*- coding: utf-8 -*-
"""Location: ./mcprelay/config.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti, Manav Gupta

MCP Relay Configuration.
This module defines configuration settings for the MCP Relay using Pydantic.
It loads configuration from environment variables with sensible defaults.

Environment variables:
- APP_NAME: Relay name (default: "mcp-relay")
- HOST: Host to bind to (default: "127.0.0.1")
- PORT: Port to listen on (default: 3000)
- BACKEND_BASE_URL: Base URL of the chat backend webhooks
- BACKEND_WEBHOOK_SUFFIX: Last path segment of every webhook (default: "bot_api_webhook")
- BACKEND_ENDPOINT: Explicit webhook used when no route prefix applies (default: derived)
- BACKEND_TIMEOUT: Backend request timeout in seconds (default: 30)
- SESSION_REQUIRE_UUID: Treat non-UUID session ids as absent (default: True)
- SESSION_STRICT: Reject requests whose session cannot be resolved (default: False)
- SSE_KEEPALIVE_INTERVAL: Seconds between heartbeat frames (default: 30)
- CACHED_METHOD: JSON-RPC method answered from the response cache (default: "tools/list")
- CACHE_TTL: Response cache time-to-live in seconds (default: 60)
- CACHE_COOLDOWN: Seconds to back off after a rate-limited refresh (default: 10)
- LOG_LEVEL: Logging level (default: "INFO")
- LOG_FORMAT: "text" or "json" (default: "text")

Examples:
    >>> from mcprelay.config import Settings
    >>> s = Settings(backend_base_url='https://chat.example.com/hooks', backend_webhook_suffix='bot')
    >>> s.default_backend_endpoint
    'https://chat.example.com/hooks/bot'
    >>> s.build_backend_endpoint('sales')
    'https://chat.example.com/hooks/sales/bot'
    >>> s2 = Settings(backend_base_url='ftp://nope')
    >>> try:
    ...     s2.validate_backend()
    ... except ValueError as e:
    ...     print('error')
    error
"""

# Standard
from functools import lru_cache
import json
import logging
from typing import Annotated, Optional, Set
from urllib.parse import urlparse

# Third-Party
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

# Only configure basic logging if no handlers exist yet
# This prevents conflicts with LoggingService while ensuring config logging works
if not logging.getLogger().handlers:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    MCP Relay configuration settings.

    Examples:
        >>> from mcprelay.config import Settings
        >>> s = Settings()
        >>> s.app_name
        'mcp-relay'
        >>> s.port
        3000
        >>> s.cache_ttl, s.cache_cooldown
        (60, 10)
        >>> s.sse_keepalive_interval
        30
        >>> s.session_require_uuid, s.session_strict
        (True, False)
    """

    # Basic Settings
    app_name: str = "mcp-relay"
    host: str = "127.0.0.1"
    port: int = 3000
    app_root_path: str = ""

    # Handshake descriptor
    protocol_version: str = "2024-11-05"
    server_name: str = "chatmi-mcp-server"
    server_version: str = "1.0.0"

    # Backend
    backend_base_url: str = "https://admin.chatme.ai/connector/webim/webim_message"
    backend_webhook_suffix: str = "bot_api_webhook"
    backend_endpoint: Optional[str] = Field(default=None, description="Webhook used when no route prefix applies; derived from base URL and suffix when unset")
    backend_timeout: float = Field(default=30.0, description="Backend request timeout in seconds")
    skip_ssl_verify: bool = False

    # Sessions
    session_require_uuid: bool = Field(default=True, description="Treat non-UUID session identifiers as absent")
    session_strict: bool = Field(default=False, description="Reject requests whose session cannot be resolved instead of falling back")
    session_default_label: str = Field(default="default", description="Conversation id used when no session can be resolved")
    session_prune_interval: int = Field(default=60, description="Seconds between sweeps for dead sessions")

    # Transport
    sse_retry_timeout: int = 5000  # milliseconds
    sse_keepalive_enabled: bool = True  # Enable SSE heartbeat frames
    sse_keepalive_interval: int = 30  # seconds between heartbeat frames

    # Response cache
    cached_method: str = Field(default="tools/list", description="JSON-RPC method served from the response cache")
    cache_ttl: int = 60  # seconds
    cache_cooldown: int = 10  # seconds after a rate-limited refresh
    cache_warmup_on_startup: bool = False
    cache_warmup_on_connect: bool = True

    # Logging
    log_level: str = "INFO"
    log_format: str = "text"  # json or text

    # CORS
    cors_enabled: bool = True

    # For allowed_origins, strip '' to ensure we're passing on valid JSON via env
    # Tell pydantic *not* to touch this env var - our validator will.
    allowed_origins: Annotated[Set[str], NoDecode] = {"*"}

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore")

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def _parse_allowed_origins(cls, v):
        """Parse allowed origins from environment variable or config value.

        Args:
            v: The input value to parse. Can be a string (JSON or CSV), set, list, or other iterable.

        Returns:
            Set[str]: A set of allowed origin strings.

        Examples:
            >>> sorted(Settings._parse_allowed_origins('["https://a.com", "https://b.com"]'))
            ['https://a.com', 'https://b.com']
            >>> sorted(Settings._parse_allowed_origins("https://x.com , https://y.com"))
            ['https://x.com', 'https://y.com']
            >>> Settings._parse_allowed_origins('""')
            set()
            >>> Settings._parse_allowed_origins({'http://existing.com'})
            {'http://existing.com'}
        """
        if isinstance(v, str):
            v = v.strip()
            if v[:1] in "\"'" and v[-1:] == v[:1]:  # strip 1 outer quote pair
                v = v[1:-1]
            try:
                parsed = set(json.loads(v))
            except json.JSONDecodeError:
                parsed = {s.strip() for s in v.split(",") if s.strip()}
            return parsed
        return set(v)

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, v: str) -> str:
        """Upper-case the configured log level and reject unknown names.

        Args:
            v: Raw log level value.

        Returns:
            str: Normalized level name.

        Raises:
            ValueError: If the level is not a standard logging level.

        Examples:
            >>> Settings._normalize_log_level('debug')
            'DEBUG'
            >>> Settings._normalize_log_level('loud')
            Traceback (most recent call last):
                ...
            ValueError: Invalid log level: loud
        """
        level = str(v).strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {v}")
        return level

    @property
    def default_backend_endpoint(self) -> str:
        """Webhook used when neither the request nor its session carries a route prefix.

        Returns:
            str: ``BACKEND_ENDPOINT`` when set, otherwise base URL joined with the suffix.

        Examples:
            >>> Settings(backend_endpoint='https://x/hook').default_backend_endpoint
            'https://x/hook'
        """
        if self.backend_endpoint:
            return self.backend_endpoint
        return f"{self.backend_base_url.rstrip('/')}/{self.backend_webhook_suffix}"

    def build_backend_endpoint(self, route_prefix: Optional[str] = None) -> str:
        """Build the webhook URL for a route prefix.

        Args:
            route_prefix: Namespace tag selecting a backend target, or None.

        Returns:
            str: Fully qualified webhook URL.

        Examples:
            >>> s = Settings(backend_base_url='https://h/base/', backend_webhook_suffix='hook')
            >>> s.build_backend_endpoint()
            'https://h/base/hook'
            >>> s.build_backend_endpoint('team-a')
            'https://h/base/team-a/hook'
        """
        if route_prefix:
            return f"{self.backend_base_url.rstrip('/')}/{route_prefix}/{self.backend_webhook_suffix}"
        return self.default_backend_endpoint

    @property
    def cors_settings(self) -> dict:
        """Get CORS settings.

        Returns:
            dict: Dictionary containing CORS configuration options.

        Examples:
            >>> s = Settings(cors_enabled=True, allowed_origins={'http://localhost'})
            >>> cors = s.cors_settings
            >>> cors['allow_origins']
            ['http://localhost']
            >>> cors['allow_credentials']
            True
            >>> Settings(allowed_origins={'*'}).cors_settings['allow_credentials']
            False
            >>> Settings(cors_enabled=False).cors_settings
            {}
        """
        return (
            {
                "allow_origins": list(self.allowed_origins),
                "allow_credentials": "*" not in self.allowed_origins,
                "allow_methods": ["*"],
                "allow_headers": ["*"],
            }
            if self.cors_enabled
            else {}
        )

    def validate_backend(self) -> None:
        """
        Validate backend configuration.

        Raises:
            ValueError: If a backend URL is not an absolute http(s) URL.

        Examples:
            >>> Settings().validate_backend()  # no error
            >>> try:
            ...     Settings(backend_endpoint='not a url').validate_backend()
            ... except ValueError as e:
            ...     print('error')
            error
        """
        for url in filter(None, [self.backend_base_url, self.backend_endpoint]):
            parsed = urlparse(url)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                raise ValueError(f"Invalid backend URL: {url}")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings: A cached instance of the Settings class.

    Examples:
        >>> settings = get_settings()
        >>> isinstance(settings, Settings)
        True
        >>> settings is get_settings()
        True
    """
    # Instantiate a fresh Pydantic Settings object,
    # loading from env vars or .env exactly once.
    cfg = Settings()
    # Validate backend URLs; will raise if mis-configured.
    cfg.validate_backend()
    return cfg


# Create settings instance
settings = get_settings()
