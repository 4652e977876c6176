"""Error taxonomy for the lobby.

Every error carries the text shown to the originating client. Errors marked
``fatal`` terminate the connection after the client has been told.
"""

from __future__ import annotations


class LobbyError(Exception):
    fatal = False
    default_message = "request failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class NameTaken(LobbyError):
    default_message = "That name is already taken."


class Banned(LobbyError):
    fatal = True
    default_message = "You are banned from this chat."


class IncorrectCredentials(LobbyError):
    fatal = True
    default_message = "Incorrect admin password."


class InvalidName(LobbyError):
    default_message = "Invalid user name."


class NotJoined(LobbyError):
    default_message = "You must join the chat first."


class AlreadyBound(LobbyError):
    default_message = "You have already joined."


class Unauthorized(LobbyError):
    default_message = "You are not authorized to perform this action."


class NotFound(LobbyError):
    default_message = "Not found."


class MalformedEvent(LobbyError):
    default_message = "bad message"


class InvalidTransition(LobbyError):
    default_message = "invalid session state transition"
