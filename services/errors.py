class DrawBoardError(Exception):
    """Base class for errors surfaced to operators and API clients"""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(DrawBoardError):
    """Bad or missing user input: empty viewer name, no prize selected, nothing left"""

    status_code = 400


class NotFoundError(DrawBoardError):
    """Board or prize absent, or not owned by / not part of the given board"""

    status_code = 404


class AuthorizationError(DrawBoardError):
    """Overlay token mismatch"""

    status_code = 403


class StoreError(DrawBoardError):
    """Underlying persistence or transport failure"""

    status_code = 503
