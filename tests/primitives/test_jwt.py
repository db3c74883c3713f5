"""Tests for unverified JWT decoding."""

from types import SimpleNamespace

import pytest

from aadauth.primitives.jwt import base64url_decode, base64url_encode, decode_jwt, extract_jwt
from helpers import make_jwt


class TestDecodeJwt:
    """Test splitting a JWT into its parts."""

    def test_decodes_header_payload_and_signature(self):
        # Arrange
        token = make_jwt({"aud": "https://management.azure.com/", "exp": 1}, signature="abc")

        # Act
        decoded = decode_jwt(token)

        # Assert
        assert decoded["header"] == {"alg": "RS256", "typ": "JWT"}
        assert decoded["payload"] == {"aud": "https://management.azure.com/", "exp": 1}
        assert decoded["signature"] == "abc"

    def test_unsigned_token_has_no_signature(self):
        # Arrange
        token = make_jwt({"sub": "x"}, signature="")

        # Act
        decoded = decode_jwt(token)

        # Assert
        assert "signature" not in decoded

    def test_accepts_token_objects(self):
        # Arrange
        token = SimpleNamespace(credentials=SimpleNamespace(access_token=make_jwt({"sub": "x"})))

        # Act & Assert
        assert decode_jwt(token)["payload"] == {"sub": "x"}

    @pytest.mark.parametrize("token", ["opaque", "not.json", "!!!.???"])
    def test_rejects_non_jwts(self, token):
        with pytest.raises(ValueError):
            decode_jwt(token)


class TestExtractJwt:
    def test_string_is_returned_as_is(self):
        assert extract_jwt("abc.def.ghi") == "abc.def.ghi"

    def test_other_objects_are_rejected(self):
        with pytest.raises(TypeError):
            extract_jwt(42)


class TestBase64Url:
    def test_padding_is_stripped_and_restored(self):
        # Arrange
        data = b"\xfb\xff\x00ab"

        # Act
        encoded = base64url_encode(data)

        # Assert
        assert "=" not in encoded
        assert "+" not in encoded and "/" not in encoded
        assert base64url_decode(encoded) == data
