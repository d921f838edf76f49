from __future__ import annotations

from typing import Optional

import httpx


class LDESPublisherError(Exception):
    """Base class for errors raised while talking to the aggregation pod."""


class SessionError(LDESPublisherError):
    """Session acquisition against the pod identity provider failed."""


class ContainerError(LDESPublisherError):
    """A container operation got a non-success answer from the pod."""

    def __init__(self, message: str, *, response: Optional[httpx.Response] = None):
        super().__init__(message)
        self.response = response

    @property
    def status_code(self) -> Optional[int]:
        return self.response.status_code if self.response is not None else None

    @classmethod
    def from_response(cls, action: str, url: str, response: httpx.Response) -> "ContainerError":
        return cls(
            f"{action} {url} failed: {response.status_code} {response.text[:200]}",
            response=response,
        )
