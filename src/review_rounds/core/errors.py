from __future__ import annotations


class ReviewRoundsError(Exception):
    """Base class for errors raised by review-rounds."""


class ConfigError(ReviewRoundsError):
    pass


class ConnectivityError(ReviewRoundsError):
    """A backend is unreachable or does not serve the required model."""


class BackendRequestError(ReviewRoundsError):
    """A generate or review request failed at the transport level."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MalformedStreamEventError(ReviewRoundsError):
    """A single stream event could not be decoded.

    Raised and handled inside the stream decoder; never fatal to a run.
    """
