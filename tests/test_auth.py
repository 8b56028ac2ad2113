from siteqa.core.auth.security import create_access_token, decode_access_token
from jose import JWTError, jwt
import pytest
import uuid

from siteqa.settings import get_settings


def test_access_token_roundtrip():
    user_id, tenant_id = uuid.uuid4(), uuid.uuid4()
    token = create_access_token(user_id, tenant_id)
    payload = decode_access_token(token)
    assert payload["sub"] == str(user_id)
    assert payload["tenant_id"] == str(tenant_id)


def test_wrong_token_type_rejected():
    settings = get_settings()
    token = jwt.encode({"sub": str(uuid.uuid4()), "type": "refresh"}, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    with pytest.raises(JWTError):
        decode_access_token(token)


def test_token_signed_with_other_secret_rejected():
    token = jwt.encode({"sub": str(uuid.uuid4()), "type": "access"}, "not-the-configured-secret", algorithm="HS256")
    with pytest.raises(JWTError):
        decode_access_token(token)
