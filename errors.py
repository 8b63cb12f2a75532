"""Exception types raised across the maintenance pipeline."""

from __future__ import annotations

from typing import Literal

GenerationErrorCode = Literal["invalid_params", "empty_response", "rate_limit", "auth_failed"]


class GenerationError(RuntimeError):
    """The generation capability could not produce a usable response."""

    def __init__(self, code: GenerationErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code


class ResolutionError(RuntimeError):
    """No backend record could be matched to the document being republished."""


class CmsError(RuntimeError):
    """The CMS answered with an error payload or could not be reached."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class UnresolvedPlaceholderError(RuntimeError):
    """A protected-fragment token survived restoration."""

    def __init__(self, placeholders: list[str]) -> None:
        super().__init__(f"Unresolved protected placeholders: {', '.join(placeholders)}")
        self.placeholders = placeholders
