class AutofillError(Exception):
    """Base class for errors surfaced to callers of the autofill engine."""


class NoLivePage(AutofillError):
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(
            "Live page not available. Click Go and load the page before Autofill."
        )


class SessionNotFound(AutofillError):
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")


class ProfileNotFound(AutofillError):
    def __init__(self, profile_id: str):
        self.profile_id = profile_id
        super().__init__(f"Profile not found: {profile_id}")


class FallbackModelFailure(AutofillError):
    """The generative model could not be reached or returned unusable output."""


class AliasConflict(ValueError):
    """Another alias already normalizes to the same text."""
