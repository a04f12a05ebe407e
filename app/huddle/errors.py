"""
Domain errors raised by services and guards.

Routes never build error responses by hand; the handlers registered in
`create_app` and on the groups blueprint turn these into redirects or 422s.
"""
from __future__ import annotations

BLANK = "can't be blank"

# Widest value a BIGINT primary key or foreign key can hold.
MAX_ID = 2**63 - 1


class HuddleError(Exception):
    pass


class AuthenticationRequired(HuddleError):
    pass


class NotFoundError(HuddleError):
    def __init__(self, entity_type: str, entity_id: object) -> None:
        super().__init__(f"{entity_type} {entity_id} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class AuthorizationError(HuddleError):
    def __init__(self, action: str, entity_type: str, entity_id: object) -> None:
        super().__init__(f"not allowed to {action} {entity_type} {entity_id}")
        self.action = action
        self.entity_type = entity_type
        self.entity_id = entity_id


class ValidationFailed(HuddleError):
    """Carries field -> [messages], serialised as-is in JSON 422 responses."""

    def __init__(self, errors: dict[str, list[str]]) -> None:
        super().__init__(", ".join(f"{field} {'; '.join(msgs)}" for field, msgs in errors.items()))
        self.errors = errors


def too_long(limit: int) -> str:
    return f"is too long (maximum is {limit} characters)"
