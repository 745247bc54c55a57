from __future__ import annotations

import pytest
from fastapi import HTTPException

from knowledge_os.auth.session import SessionVerifier

from tests.fakes import JWT_SECRET
from tests.fakes import make_token


def test_verify_returns_subject() -> None:
    verifier = SessionVerifier(jwt_secret=JWT_SECRET)
    assert verifier.verify(make_token("user-42")) == "user-42"


def test_verify_rejects_wrong_secret() -> None:
    verifier = SessionVerifier(jwt_secret=JWT_SECRET)
    token = make_token("user-42", secret="another-secret-that-is-long-enough-too")
    with pytest.raises(HTTPException) as exc_info:
        verifier.verify(token)
    assert exc_info.value.status_code == 401


def test_verify_rejects_expired_token() -> None:
    verifier = SessionVerifier(jwt_secret=JWT_SECRET)
    with pytest.raises(HTTPException):
        verifier.verify(make_token("user-42", expires_in=-60))


def test_verify_rejects_wrong_audience() -> None:
    verifier = SessionVerifier(jwt_secret=JWT_SECRET)
    with pytest.raises(HTTPException):
        verifier.verify(make_token("user-42", audience="anon"))


def test_authorization_header_must_be_bearer() -> None:
    verifier = SessionVerifier(jwt_secret=JWT_SECRET)
    with pytest.raises(HTTPException):
        verifier.verify_authorization_header(None)
    with pytest.raises(HTTPException):
        verifier.verify_authorization_header(f"Basic {make_token('user-42')}")
    assert verifier.verify_authorization_header(f"Bearer {make_token('user-42')}") == "user-42"


def test_empty_secret_is_rejected() -> None:
    with pytest.raises(ValueError):
        SessionVerifier(jwt_secret="")
