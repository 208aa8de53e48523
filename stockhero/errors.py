"""Request-level errors raised by the debate core."""

from datetime import datetime


class ArenaError(Exception):
    """Base class for request-level failures."""


class UnknownSessionError(ArenaError):
    def __init__(self, session_id: str, message: str = "") -> None:
        self.session_id = session_id
        super().__init__(message or f"Unknown session: {session_id}")


class InvalidRoundTransition(ArenaError):
    def __init__(self, session_id: str, message: str) -> None:
        self.session_id = session_id
        super().__init__(f"[{session_id}] {message}")


class QuotaExceededError(ArenaError):
    """Raised before any generation when a user's daily quota is spent."""

    def __init__(self, user_id: str, feature_key: str, used: int, limit: int, reset_at: datetime) -> None:
        self.user_id = user_id
        self.feature_key = feature_key
        self.used = used
        self.limit = limit
        self.reset_at = reset_at
        super().__init__(
            f"Daily {feature_key} limit reached for {user_id} ({used}/{limit}), resets at {reset_at.isoformat()}"
        )


class UpgradeRequiredError(ArenaError):
    """Raised when the user's plan does not include a feature at all."""

    def __init__(self, user_id: str, feature_key: str, plan: str, required_plan: str | None) -> None:
        self.user_id = user_id
        self.feature_key = feature_key
        self.plan = plan
        self.required_plan = required_plan
        if required_plan is None:
            message = f"{feature_key} is not available on any plan"
        else:
            message = f"{feature_key} needs the {required_plan} plan or higher (current plan: {plan})"
        super().__init__(message)
