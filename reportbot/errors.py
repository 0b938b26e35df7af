# -*- coding: utf-8 -*-
"""Exceptions raised by the report bot."""


class ReportBotError(Exception):
    """Base exception of the report bot."""


class ConfigError(ReportBotError):
    """Invalid or missing configuration value."""


class AuthenticationMissingError(ReportBotError):
    """No Yandex Disk OAuth token is stored for the user."""

    def __init__(self, user_id: int):
        super().__init__(f"OAuth token not set for user {user_id}. Use /auth to connect Yandex Disk.")
        self.user_id = user_id


class DiskError(ReportBotError):
    """Yandex Disk API returned an error."""

    def __init__(self, message: str, status: int | None = None, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body


class DiskNotFoundError(DiskError):
    """The requested resource does not exist on the disk."""


class DiskUnavailableError(DiskError):
    """The disk could not be reached (network error or timeout)."""


class UploadError(ReportBotError):
    """Uploading a file to the disk failed."""


class OAuthError(ReportBotError):
    """Exchanging an authorization code for a token failed."""
