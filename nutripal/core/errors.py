class NutriPalError(Exception):
    """Base class for errors raised inside the dialogue core."""


class CollaboratorError(NutriPalError):
    """A data store, language service or lookup call failed after retries.

    The original exception is kept on ``__cause__``; ``str(error)`` is only
    meant for logs, never for the user.
    """

    def __init__(self, service: str, message: str = ""):
        self.service = service
        super().__init__(f"{service}: {message}" if message else service)


class RecipeParseError(NutriPalError):
    """No ingredients could be recovered from the recipe text."""


class InvalidTransitionError(NutriPalError):
    def __init__(self, step, event):
        self.step = step
        self.event = event
        super().__init__(f"No transition from {step} on {event}")


class PendingActionError(NutriPalError):
    """A stored pending action could not be decoded."""
