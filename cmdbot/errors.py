from __future__ import annotations


class BotError(Exception):
    """Base exception for command processing errors."""


class ConfigKeyError(BotError):
    """Raised when a user configuration key is locked or unknown."""


class HistoryNotFoundError(BotError):
    def __init__(self) -> None:
        super().__init__("History not found")


class ProviderNotFoundError(BotError):
    """Raised when no chat or image provider is configured."""


class PluginError(BotError):
    """Base exception for plugin command errors."""


class PluginTemplateError(PluginError):
    """Raised when a request template is malformed or its input is invalid."""


class PluginRequestError(PluginError):
    """Raised when the plugin backend answers with a non-2xx status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
