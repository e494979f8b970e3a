from datetime import timedelta

from jose import jwt

from madifa.identity import TokenIdentity
from madifa.security import create_access_token, decode_subject


def test_no_token_is_guest():
    identity = TokenIdentity()
    assert identity.current_subject_key() is None
    assert identity.access_token() is None


def test_token_subject():
    token = create_access_token(7)
    identity = TokenIdentity(token)
    assert identity.current_subject_key() == "7"
    assert identity.access_token() == token


def test_expired_token_is_guest():
    token = create_access_token(7, expires_delta=timedelta(seconds=-5))
    identity = TokenIdentity(token)
    assert identity.current_subject_key() is None
    assert identity.access_token() is None


def test_unreadable_token_is_guest():
    identity = TokenIdentity("not.a.jwt")
    assert identity.current_subject_key() is None


def test_set_and_clear():
    identity = TokenIdentity()
    identity.set_token(create_access_token("u1"))
    assert identity.current_subject_key() == "u1"
    identity.clear()
    assert identity.current_subject_key() is None


def test_server_side_decode():
    assert decode_subject(create_access_token("u1")) == "u1"
    assert decode_subject("garbage") is None
    assert decode_subject(create_access_token("u1", expires_delta=timedelta(seconds=-5))) is None


def test_bad_exp_claim_is_guest():
    token = jwt.encode({"sub": "7", "exp": "soon"}, "whatever", algorithm="HS256")
    identity = TokenIdentity(token)
    assert identity.current_subject_key() is None
    assert identity.access_token() is None
