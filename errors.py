from typing import Optional


class SignalingError(Exception):
    """Recoverable, client-facing error.

    Reported back to the originating connection as an ``error`` event and
    otherwise ignored.
    """

    default_message = "Signaling error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    @property
    def code(self) -> str:
        return type(self).__name__


class InvalidRoom(SignalingError):
    default_message = "Room ID is required"


class RoomFull(SignalingError):
    default_message = "Room is full"

    def __init__(self, message: Optional[str] = None, vacated=None):
        super().__init__(message)
        # Previous room left on the way in, if any; survivors still need a notice
        self.vacated = vacated


class PeersNotColocated(SignalingError):
    default_message = "Target user is not in your room"


class InvalidCallParams(SignalingError):
    default_message = "Invalid call parameters"


class InvalidMessage(SignalingError):
    default_message = "Invalid message"
