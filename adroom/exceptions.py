"""
Custom exception hierarchy for AdRoom.

Structured error handling with clear categories:
- Configuration errors (caught at startup)
- Generation errors (LLM replies that cannot be used)
- Dependency failures (Graph API, OpenAI, feeds)
- Store failures (Supabase reads/writes)

Usage:
    from adroom.exceptions import AdPlatformError

    try:
        await ads.update_campaign(token, campaign_id, status="PAUSED")
    except AdPlatformError as e:
        reason += f" [API Execution Failed: {e}]"
"""

from __future__ import annotations

from typing import Optional


class AdRoomError(Exception):
    """
    Base exception for all AdRoom errors.

    Catch `AdRoomError` to handle any platform-specific error.
    """

    def __init__(self, message: str, *, details: Optional[dict] = None):
        super().__init__(message)
        self.details = details or {}


# ── Configuration Errors ──────────────────────────────────────────


class ConfigurationError(AdRoomError):
    """
    Raised when required environment variables are missing or the
    adroom.yaml settings file is invalid.
    """

    def __init__(
        self,
        message: str,
        *,
        config_path: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details=details)
        self.config_path = config_path


# ── Generation Errors ─────────────────────────────────────────────


class GenerationError(AdRoomError):
    """
    Raised when the text model's reply cannot be parsed as JSON or does
    not have the expected shape. Never retried.
    """

    def __init__(
        self,
        message: str,
        *,
        raw_text: str = "",
        details: Optional[dict] = None,
    ):
        super().__init__(message, details=details)
        self.raw_text = raw_text


# ── Dependency Errors ─────────────────────────────────────────────


class DependencyError(AdRoomError):
    """
    Raised when an external dependency (API, feed, model provider) is
    unavailable or returns an unexpected response.
    """

    def __init__(
        self,
        message: str,
        *,
        service: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details=details)
        self.service = service
        self.status_code = status_code


class AdPlatformError(DependencyError):
    """
    A Facebook Graph API call returned a non-2xx response.

    The message is the upstream `error.message` when the body carries one.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(
            message,
            service="facebook",
            status_code=status_code,
            details=details,
        )


# ── Store Errors ──────────────────────────────────────────────────


class StoreError(AdRoomError):
    """
    Raised when reading from or writing to Supabase fails.
    """

    def __init__(
        self,
        message: str,
        *,
        table: Optional[str] = None,
        operation: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details=details)
        self.table = table
        self.operation = operation
