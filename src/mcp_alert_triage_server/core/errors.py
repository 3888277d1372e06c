"""Error taxonomy shared by the core and the tool layer."""

from __future__ import annotations


class TriageError(Exception):
    """Base class for triage errors."""


class ValidationError(TriageError):
    """An action was invoked with nothing to act on or outside its view."""


class TransportError(TriageError):
    """The search engine could not be reached or rejected the request.

    ``status == 0`` means no response was received at all. ``detail`` holds
    the start of the response body, when there was one.
    """

    def __init__(
        self, status: int, status_text: str = "", *, url: str = "", detail: str = ""
    ) -> None:
        self.status = status
        self.status_text = status_text
        self.url = url
        self.detail = detail
        super().__init__(self.user_message())

    @property
    def unreachable(self) -> bool:
        return self.status == 0

    def user_message(self) -> str:
        if self.unreachable:
            return f"No response from Elastic Search at {self.url}"
        return f"Error: {self.status} {self.status_text}".rstrip()


class JobStalledError(TriageError):
    """A bulk job stopped shrinking its own result set."""
