"""Authorization platform collaborators."""

from .base import AuthorizationService, scope_display_name

__all__ = ["AuthorizationService", "scope_display_name"]
