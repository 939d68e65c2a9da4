"""Error definitions for the SubsAI translator."""

from __future__ import annotations


class SubsAIError(Exception):
    """Base exception for all custom errors."""


class TranslationProviderConfigurationError(SubsAIError):
    """Raised when the translation provider is misconfigured."""


class EndpointError(SubsAIError):
    """Raised when a completion ends in anything other than a normal stop."""


class CountMismatchError(SubsAIError):
    """Raised when a response parses into a different number of segments."""

    def __init__(self, observed: int, expected: int) -> None:
        super().__init__(
            f"Translation length mismatch: {observed}/{expected}"
        )
        self.observed = observed
        self.expected = expected


class GroupTranslationError(SubsAIError):
    """Raised at file level when one or more groups exhausted their retries."""

    def __init__(self, group_id: int, observed: int | None, expected: int) -> None:
        counts = f"{observed}/{expected}" if observed is not None else f"?/{expected}"
        super().__init__(
            f"Group {group_id} failed to translate, translation length mismatch: {counts}"
        )
        self.group_id = group_id
        self.observed = observed
        self.expected = expected


class JobSubmissionError(SubsAIError):
    """Raised when a batch job could not be created remotely."""


class JobPollError(SubsAIError):
    """Raised when the status or results of a batch job could not be read."""


class ExtractionError(SubsAIError):
    """Raised when a subtitle file yields no parsable segments."""
