"""Exception types raised across mcpkit."""

from __future__ import annotations


class McpkitError(Exception):
    """Base class for every error mcpkit reports to the user."""


class ConfigError(McpkitError):
    pass


class BrowserError(McpkitError):
    pass


class NoActivePageError(BrowserError):
    pass


class SessionError(BrowserError):
    pass


class ActionError(BrowserError):
    pass


class ExtractionError(BrowserError):
    pass


class AuthenticationRequiredError(McpkitError):
    pass


class DiscoveryError(McpkitError):
    pass


class CredentialStoreError(McpkitError):
    pass


class GenerationError(McpkitError):
    pass
