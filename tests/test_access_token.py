from __future__ import annotations

import pytest

from motion_gateway import derive_access_token, InvalidKeyError, InvalidTokenError, AuthError

KEY = "74ae544c-d16e-4c"
TOKEN = "37412C478E0FBEAB"
EXPECTED = "8570A96BC18ADB21D1FC155B24ECFD73"

def test_known_access_token() -> None:
    assert derive_access_token(KEY, TOKEN) == EXPECTED

def test_access_token_is_deterministic() -> None:
    assert derive_access_token(KEY, TOKEN) == derive_access_token(KEY, TOKEN)

def test_access_token_accepts_bytes() -> None:
    assert derive_access_token(KEY.encode(), TOKEN.encode()) == EXPECTED

def test_access_token_format() -> None:
    result = derive_access_token(KEY, "0123456789abcdef")
    assert len(result) == 32
    assert result == result.upper()
    int(result, 16)

@pytest.mark.parametrize("key", ["", "short", "74ae544c-d16e-4c0"])
def test_invalid_key_length(key: str) -> None:
    with pytest.raises(InvalidKeyError):
        derive_access_token(key, TOKEN)

def test_invalid_key_is_an_auth_error() -> None:
    with pytest.raises(AuthError):
        derive_access_token("bad", TOKEN)

@pytest.mark.parametrize("token", ["", "37412C478E0FBEA", "37412C478E0FBEAB0"])
def test_token_must_be_whole_blocks(token: str) -> None:
    with pytest.raises(InvalidTokenError):
        derive_access_token(KEY, token)
