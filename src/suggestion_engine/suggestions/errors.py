"""Error taxonomy for the suggestion lifecycle."""

from __future__ import annotations


class SuggestionError(Exception):
    """Base class for expected suggestion-lifecycle failures."""


class NotFound(SuggestionError):
    """Suggestion (or a task referenced inside one) does not exist."""


class InvalidReference(SuggestionError):
    """Target task id is neither in a board suggestion of the session nor persisted."""


class InvalidTransition(SuggestionError):
    """Status change is not allowed from the current status."""

    def __init__(self, suggestion_id: str, current_status: str, action: str) -> None:
        super().__init__(
            f"Cannot {action} suggestion {suggestion_id}: status is already '{current_status}'"
        )
        self.suggestion_id = suggestion_id
        self.current_status = current_status
        self.action = action


class InvalidContent(SuggestionError):
    """Content does not match the variant required by the suggestion type."""


class GenerationFailure(SuggestionError):
    """The language model produced no usable draft."""

    def __init__(self, kind: str) -> None:
        super().__init__(f"Failed to generate {kind}")
        self.kind = kind


class MaterializationFailure(SuggestionError):
    """A write to the base persistence layer failed while materializing."""


class GenerationUnavailable(SuggestionError):
    """No language model client is configured."""
