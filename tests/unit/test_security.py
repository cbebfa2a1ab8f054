"""Tests for access token handling."""

import uuid
from datetime import timedelta

from jose import jwt

from ptw.core.security import create_access_token, decode_token


class TestAccessTokens:
    """JWT creation and validation."""

    def test_round_trip(self, settings):
        user_id = uuid.uuid4()
        token = create_access_token(user_id, "Area_Manager", settings=settings)

        claims = decode_token(token, settings)
        assert claims.user_id == user_id
        assert claims.role == "Area_Manager"

    def test_expired_token(self, settings):
        token = create_access_token(uuid.uuid4(), "Requester", expires_delta=timedelta(minutes=-1), settings=settings)
        assert decode_token(token, settings) is None

    def test_wrong_secret(self, settings):
        token = create_access_token(uuid.uuid4(), "Requester", settings=settings)
        other = settings.model_copy(update={"secret_key": "another-secret"})
        assert decode_token(token, other) is None

    def test_refresh_token_rejected(self, settings):
        token = jwt.encode(
            {"sub": str(uuid.uuid4()), "type": "refresh"}, settings.secret_key, algorithm=settings.algorithm
        )
        assert decode_token(token, settings) is None

    def test_subject_must_be_uuid(self, settings):
        token = jwt.encode(
            {"sub": "not-a-uuid", "type": "access"}, settings.secret_key, algorithm=settings.algorithm
        )
        assert decode_token(token, settings) is None

    def test_garbage(self, settings):
        assert decode_token("definitely.not.a-token", settings) is None
