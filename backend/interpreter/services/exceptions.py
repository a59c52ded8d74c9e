"""
Interpreter Exceptions

Custom exceptions for session, upstream and collaborator errors.
"""


class InterpreterError(Exception):
    """Base exception for interpreter errors"""
    pass


class UnsupportedLanguageError(InterpreterError):
    """Raised when an utterance is in neither configured language"""

    def __init__(self, detected=None, message: str = "Unsupported language"):
        super().__init__(message)
        self.detected = detected


class InvalidTransitionError(InterpreterError):
    """Raised when a session state change is not allowed"""

    def __init__(self, current, target):
        super().__init__(f"Invalid session transition {current} -> {target}")
        self.current = current
        self.target = target


class UpstreamError(InterpreterError):
    """Base exception for upstream provider errors"""
    pass


class UpstreamHandshakeError(UpstreamError):
    """Raised when the upstream session cannot be created or configured"""
    pass


class UpstreamClosedError(UpstreamError):
    """Raised when the upstream channel is closed"""
    pass


class ClientDisconnectedError(InterpreterError):
    """Raised when the client channel is gone"""
    pass


class CollaboratorError(InterpreterError):
    """Base exception for external collaborator failures"""
    pass


class LLMError(CollaboratorError):
    """Raised when a text model call fails or returns an unusable answer"""
    pass


class PersistenceError(CollaboratorError):
    """Raised when the conversation store cannot complete a write"""
    pass
