"""Chat history and the feature request queue.

Both live only for the lifetime of the process and grow without bound.
"""

from __future__ import annotations

from .errors import NotFound
from .models import ChatMessage, FeatureRequest


class MessageLog:
    """Append-only ordered chat history that admins may wipe."""

    def __init__(self) -> None:
        self._messages: list[ChatMessage] = []

    def __len__(self) -> int:
        return len(self._messages)

    def append(self, message: ChatMessage) -> ChatMessage:
        self._messages.append(message)
        return message

    def replay(self) -> list[ChatMessage]:
        return list(self._messages)

    def clear(self) -> int:
        """Truncate to empty. Returns how many messages were dropped."""
        dropped = len(self._messages)
        self._messages = []
        return dropped


class FeatureRequestQueue:
    def __init__(self) -> None:
        self._requests: list[FeatureRequest] = []

    def __len__(self) -> int:
        return len(self._requests)

    def add(self, request: FeatureRequest) -> FeatureRequest:
        self._requests.append(request)
        return request

    def remove(self, request_id: str) -> FeatureRequest:
        for i, req in enumerate(self._requests):
            if req.id == request_id:
                return self._requests.pop(i)
        raise NotFound("No such feature request.")

    def snapshot(self) -> list[FeatureRequest]:
        return list(self._requests)
