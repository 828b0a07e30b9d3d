"""Exception types raised across the bot pipeline."""


class RestobotError(Exception):
    """Base class for bot errors."""


class ActionBuildError(RestobotError):
    """A declared action could not be built from the conversation context."""

    def __init__(self, action_type: str, reason: str):
        super().__init__(f"{action_type}: {reason}")
        self.action_type = action_type
        self.reason = reason


class ActionDispatchError(RestobotError):
    """An action failed while performing its side effect."""


class ExtractionError(RestobotError):
    """The structured extraction backend returned no usable answer."""
