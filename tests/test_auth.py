from datetime import timedelta

import pytest
from jose import jwt

from ticketeer.utils.auth import AuthenticatedUser, TokenAuthProvider, UserRole, create_access_token
from ticketeer.utils.exceptions import InvalidTokenError


def test_round_trip(settings):
    token = create_access_token("user-42", settings, role=UserRole.ORGANIZER, email="org@example.com")

    user = TokenAuthProvider(settings).verify(token)

    assert user == AuthenticatedUser(user_id="user-42", role=UserRole.ORGANIZER, email="org@example.com")
    assert not user.is_admin


def test_admin_role(settings):
    user = TokenAuthProvider(settings).verify(create_access_token("root", settings, role=UserRole.ADMIN))

    assert user.is_admin
    assert user.email is None


def test_expired_token(settings):
    token = create_access_token("user-1", settings, expires_delta=timedelta(seconds=-5))

    with pytest.raises(InvalidTokenError) as exc_info:
        TokenAuthProvider(settings).verify(token)
    assert exc_info.value.message == "Token has expired"


def test_wrong_signature(settings):
    other = settings.model_copy(update={"SECRET_KEY": "another-key"})
    token = create_access_token("user-1", other)

    with pytest.raises(InvalidTokenError):
        TokenAuthProvider(settings).verify(token)


def test_garbage_token(settings):
    with pytest.raises(InvalidTokenError):
        TokenAuthProvider(settings).verify("not-a-jwt")


@pytest.mark.parametrize("claims", [{"role": "user"}, {"sub": "user-1", "role": "superuser"}])
def test_missing_subject_or_unknown_role(settings, claims):
    token = jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

    with pytest.raises(InvalidTokenError):
        TokenAuthProvider(settings).verify(token)


def test_role_defaults_to_user(settings):
    token = jwt.encode({"sub": "user-1"}, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

    assert TokenAuthProvider(settings).verify(token).role == UserRole.USER
