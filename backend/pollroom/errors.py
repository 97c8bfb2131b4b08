"""Error taxonomy shared by the HTTP routes and the Socket.IO handlers."""


class PollError(Exception):
    code = 'PollError'
    status = 400

    def __init__(self, message=None):
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_dict(self):
        return {'error': self.message, 'code': self.code}


class InvalidInput(PollError):
    code = 'InvalidInput'
    status = 400


class NotFound(PollError):
    code = 'NotFound'
    status = 404


class DuplicateName(PollError):
    code = 'DuplicateName'
    status = 409


class InvalidState(PollError):
    code = 'InvalidState'
    status = 409


class MalformedMessage(PollError):
    code = 'MalformedMessage'
    status = 400


class TransportError(PollError):
    """A send to a single connection failed. Never surfaced to callers."""
    code = 'TransportError'
    status = 500
