class PortwardenError(Exception):
    """Base class for every error portwarden surfaces to the operator."""


class TransportError(PortwardenError):
    """The port inventory could not be read."""


class KillRejected(PortwardenError):
    """A kill was refused locally because the target is protected."""

    def __init__(self, entry):
        self.entry = entry
        super().__init__(f"Cannot kill protected process: {entry.process_name}")


class KillFailed(PortwardenError):
    ACCESS_DENIED = "access_denied"
    ALREADY_EXITED = "already_exited"
    OTHER = "other"

    def __init__(self, message, reason=OTHER):
        self.reason = reason
        super().__init__(message)

    @classmethod
    def classify(cls, message):
        """Guess the failure reason from a collaborator message."""
        text = (message or "").lower()
        if ("access" in text and "denied" in text) or "permission" in text:
            return cls(message, cls.ACCESS_DENIED)
        if "no such process" in text or "not found" in text or "exited" in text:
            return cls(message, cls.ALREADY_EXITED)
        return cls(message, cls.OTHER)


class CommandError(PortwardenError):
    """Input was neither a command nor a port that is in use."""


class ElevationError(PortwardenError):
    """Restarting with elevated privileges is not possible."""
