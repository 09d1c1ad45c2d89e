class ConfirmationError(Exception):
    """Base class for errors raised to callers of the confirmation controller."""


class SessionNotFound(ConfirmationError):
    def __init__(self, session_id: str):
        super().__init__(f"Unknown confirmation session: {session_id}")
        self.session_id = session_id


class InvalidTransition(ConfirmationError):
    def __init__(self, session_id: str, state: str, action: str):
        super().__init__(f"Cannot {action} confirmation {session_id} in state '{state}'")
        self.session_id = session_id
        self.state = state
        self.action = action


class PaymentInitiationError(ConfirmationError):
    """The gateway refused (or never acknowledged) the STK push."""
