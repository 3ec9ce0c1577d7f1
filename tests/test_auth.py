import pytest
from jose import jwt

from auth import TokenDecoder
from config import Settings
from conftest import SECRET, make_token
from errors import Unauthorized


@pytest.fixture()
def decoder(settings):
    return TokenDecoder(settings)


def test_claims_become_identity(decoder):
    identity = decoder.decode(make_token("user-7", email="seven@example.com", groups=["Admin", "Guides"]))

    assert identity.user_id == "user-7"
    assert identity.email == "seven@example.com"
    assert identity.email_verified is True
    assert identity.groups == ("Admin", "Guides")
    assert identity.is_admin is True


def test_comma_separated_groups_claim(decoder):
    token = jwt.encode({"sub": "user-8", "cognito:groups": "Guides, Admin"}, SECRET, algorithm="HS256")

    assert decoder.decode(token).is_admin is True


def test_regular_user_is_not_admin(decoder):
    assert decoder.decode(make_token("user-9")).is_admin is False


@pytest.mark.parametrize(
    "token",
    [
        jwt.encode({"sub": "user-1"}, "some-other-secret", algorithm="HS256"),
        jwt.encode({"email": "nobody@example.com"}, SECRET, algorithm="HS256"),
        "garbage",
    ],
)
def test_invalid_tokens_are_rejected(decoder, token):
    with pytest.raises(Unauthorized):
        decoder.decode(token)


def test_audience_is_checked_when_configured():
    decoder = TokenDecoder(Settings(jwt_key=SECRET, jwt_audience="hiking-web"))

    assert decoder.decode(make_token("user-1", aud="hiking-web")).user_id == "user-1"
    with pytest.raises(Unauthorized):
        decoder.decode(make_token("user-1", aud="someone-else"))


def test_unconfigured_key_rejects_everything():
    with pytest.raises(Unauthorized):
        TokenDecoder(Settings(jwt_key="")).decode(make_token("user-1"))
