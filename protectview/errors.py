"""
Error types surfaced by the viewer API.
Each carries the HTTP status the API blueprint renders it with.
"""


class ViewerError(Exception):
    """Base class for errors reported to the browser as {"error": message}"""
    status_code = 500

    def __init__(self, message: str = None):
        super().__init__(message or self.default_message())

    @classmethod
    def default_message(cls) -> str:
        return 'Request failed'

    @property
    def message(self) -> str:
        return str(self)


class NoSession(ViewerError):
    status_code = 401

    @classmethod
    def default_message(cls):
        return 'No session'


class MissingCredentials(ViewerError):
    """Session exists but carries no username/password for interactive login"""
    status_code = 400

    @classmethod
    def default_message(cls):
        return 'Invalid session: missing credentials'


class InvalidRequest(ViewerError):
    status_code = 400


class CameraNotFound(ViewerError):
    status_code = 404

    @classmethod
    def default_message(cls):
        return 'Camera not found'


class LoginFailed(ViewerError):
    @classmethod
    def default_message(cls):
        return 'Login to NVR failed'


class UpstreamTimeout(ViewerError):
    pass


class StreamError(ViewerError):
    @classmethod
    def default_message(cls):
        return 'Failed to start livestream'
