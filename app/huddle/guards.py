from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import g

from app.huddle.errors import AuthenticationRequired
from app.huddle.models import User


def current_user() -> User:
    """The signed-in user, or AuthenticationRequired."""
    user: User | None = getattr(g, "current_user", None)
    if not user or not user.is_active:
        raise AuthenticationRequired()
    return user


def login_required(fn: Callable[..., Any]) -> Callable[..., Any]:
    # Unauthenticated -> AuthenticationRequired, which the app turns into a sign-in redirect.
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        current_user()
        return fn(*args, **kwargs)

    return wrapped
