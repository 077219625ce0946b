# tests/unit/core/test_security.py
from salesync.core.security import Caller, sign_user_token, verify_user_token

SECRET = "test-secret-key"
USER = "11111111-1111-4111-8111-111111111111"


def test_user_token_round_trip():
    token = sign_user_token(USER, SECRET)
    assert token.startswith(f"{USER}.")
    assert verify_user_token(token, SECRET) == USER


def test_user_token_rejects_tampering():
    token = sign_user_token(USER, SECRET)
    assert verify_user_token(token, "another-secret") is None
    assert verify_user_token("22222222-2222-4222-8222-222222222222." + token.split(".")[1], SECRET) is None
    assert verify_user_token("no-signature", SECRET) is None
    assert verify_user_token("", SECRET) is None


def test_caller_access():
    assert Caller(is_operator=True).can_access(USER)
    assert Caller(user_id=USER).can_access(USER)
    assert not Caller(user_id="someone-else").can_access(USER)
    assert not Caller().can_access(USER)
