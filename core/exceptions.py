class SessionEngineError(Exception):
    """Base class for practice-test session errors."""


class StorageUnavailable(SessionEngineError):
    """The session store could not be read or written; the exam cannot start."""


class SaveFailed(SessionEngineError):
    """A save transaction was rolled back. Non-fatal: in-memory state stays authoritative."""


class SessionClosed(SessionEngineError):
    """Mutation attempted on a session that is completed or no longer live."""

    def __init__(self, session_id: str, state: str):
        super().__init__(f"Session {session_id} is {state}")
        self.session_id = session_id
        self.state = state
