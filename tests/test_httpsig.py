import json

import httpx
import pytest
import respx

from fedreceiver import httpsig
from fedreceiver.httpsig import HTTPSigInfo
from fedreceiver.key import Key
from tests import factories
from tests.utils import sign_request

_BODY = json.dumps({"type": "Create", "id": "https://example.com/1"}).encode()


@pytest.fixture
def remote_key(respx_mock: respx.MockRouter) -> tuple[Key, respx.Route]:
    privkey, pubkey = factories.generate_key()
    ra = factories.RemoteActorFactory(
        base_url="https://example.com",
        username="toto",
        public_key=pubkey,
    )
    k = Key(ra.ap_id, f"{ra.ap_id}#main-key")
    k.load(privkey)
    route = respx_mock.get(ra.ap_id).mock(
        return_value=httpx.Response(200, json=ra.ap_actor)
    )
    return k, route


@pytest.mark.asyncio
async def test_verify_signature__no_signature() -> None:
    httpsig_info = await httpsig.verify_signature(
        "POST", "/inbox", {"Content-Type": "application/activity+json"}, _BODY
    )

    assert httpsig_info == HTTPSigInfo(has_valid_signature=False)


@pytest.mark.asyncio
async def test_verify_signature__valid(remote_key) -> None:
    k, route = remote_key

    httpsig_info = await httpsig.verify_signature(
        "POST", "/inbox", sign_request(k, _BODY), _BODY
    )

    assert httpsig_info.has_valid_signature is True
    assert httpsig_info.signed_by_ap_actor_id == k.owner
    assert httpsig_info.server == "example.com"

    # The key is cached
    await httpsig.verify_signature("POST", "/inbox", sign_request(k, _BODY), _BODY)
    assert route.call_count == 1


@pytest.mark.asyncio
async def test_verify_signature__altered_body(remote_key) -> None:
    k, route = remote_key
    headers = sign_request(k, _BODY)

    httpsig_info = await httpsig.verify_signature(
        "POST", "/inbox", headers, _BODY + b" "
    )

    assert httpsig_info.has_valid_signature is False
    assert httpsig_info.signed_by_ap_actor_id is None
    # The key is refreshed once before giving up
    assert route.call_count == 2


@pytest.mark.asyncio
async def test_verify_signature__other_path(remote_key) -> None:
    k, _ = remote_key

    httpsig_info = await httpsig.verify_signature(
        "POST", "/users/1/inbox", sign_request(k, _BODY), _BODY
    )

    assert httpsig_info.has_valid_signature is False


@pytest.mark.asyncio
async def test_verify_signature__expired(remote_key) -> None:
    k, route = remote_key
    headers = sign_request(k, _BODY)
    headers["date"] = "Mon, 03 Jan 2022 10:00:00 GMT"

    httpsig_info = await httpsig.verify_signature("POST", "/inbox", headers, _BODY)

    assert httpsig_info.has_valid_signature is False
    assert httpsig_info.is_expired is True
    assert route.called is False


@pytest.mark.asyncio
async def test_verify_signature__unsupported_algorithm() -> None:
    headers = {
        "Signature": (
            'keyId="https://example.com/users/toto#main-key",'
            'algorithm="ed25519",headers="date",signature="c2lnbmF0dXJl"'
        )
    }

    httpsig_info = await httpsig.verify_signature("POST", "/inbox", headers, _BODY)

    assert httpsig_info.has_valid_signature is False
    assert httpsig_info.is_unsupported_algorithm is True


@pytest.mark.asyncio
async def test_verify_signature__blocked_server(monkeypatch, remote_key) -> None:
    k, route = remote_key
    monkeypatch.setattr(httpsig, "is_hostname_blocked", lambda h: h == "example.com")

    httpsig_info = await httpsig.verify_signature(
        "POST", "/inbox", sign_request(k, _BODY), _BODY
    )

    assert httpsig_info.has_valid_signature is False
    assert httpsig_info.is_from_blocked_server is True
    assert route.called is False


@pytest.mark.asyncio
async def test_verify_signature__gone_actor(respx_mock: respx.MockRouter) -> None:
    privkey, _ = factories.generate_key()
    k = Key("https://example.com/users/gone", "https://example.com/users/gone#main-key")
    k.load(privkey)
    respx_mock.get("https://example.com/users/gone").mock(
        return_value=httpx.Response(410)
    )

    httpsig_info = await httpsig.verify_signature(
        "POST", "/inbox", sign_request(k, _BODY), _BODY
    )

    assert httpsig_info.has_valid_signature is False
    assert httpsig_info.is_ap_actor_gone is True


def _standalone_key(
    respx_mock: respx.MockRouter, key_id: str, owner: str
) -> tuple[Key, str]:
    privkey, pubkey = factories.generate_key()
    respx_mock.get(key_id).mock(
        return_value=httpx.Response(
            200,
            json={
                "@context": "https://w3id.org/security/v1",
                "type": "Key",
                "id": key_id,
                "owner": owner,
                "publicKeyPem": pubkey,
            },
        )
    )
    k = Key(owner, key_id)
    k.load(privkey)
    return k, pubkey


@pytest.mark.asyncio
async def test_verify_signature__standalone_key_claimed_by_its_owner(
    respx_mock: respx.MockRouter,
) -> None:
    k, pubkey = _standalone_key(
        respx_mock, "https://example.com/keys/1", "https://example.com/users/toto"
    )
    ra = factories.RemoteActorFactory(
        base_url="https://example.com/users/toto",
        username="toto",
        public_key=pubkey,
    )
    ra.ap_actor["publicKey"]["id"] = "https://example.com/keys/1"
    respx_mock.get(ra.ap_id).mock(return_value=httpx.Response(200, json=ra.ap_actor))

    httpsig_info = await httpsig.verify_signature(
        "POST", "/inbox", sign_request(k, _BODY), _BODY
    )

    assert httpsig_info.has_valid_signature is True
    assert httpsig_info.signed_by_ap_actor_id == ra.ap_id


@pytest.mark.asyncio
async def test_verify_signature__standalone_key_with_a_foreign_owner(
    respx_mock: respx.MockRouter,
) -> None:
    # A key hosted on another server claims to belong to the victim
    k, _ = _standalone_key(
        respx_mock, "https://evil.example/keys/1", "https://victim.example/users/alice"
    )
    victim = factories.RemoteActorFactory(
        base_url="https://victim.example/users/alice",
        username="alice",
        public_key=factories.generate_key()[1],
    )
    respx_mock.get(victim.ap_id).mock(
        return_value=httpx.Response(200, json=victim.ap_actor)
    )

    httpsig_info = await httpsig.verify_signature(
        "POST", "/inbox", sign_request(k, _BODY), _BODY
    )

    assert httpsig_info.has_valid_signature is False
    assert httpsig_info.signed_by_ap_actor_id is None
    assert "https://evil.example/keys/1" not in httpsig._KEY_CACHE


@pytest.mark.asyncio
async def test_verify_signature__actor_served_from_another_url(
    respx_mock: respx.MockRouter,
) -> None:
    privkey, pubkey = factories.generate_key()
    victim = factories.RemoteActorFactory(
        base_url="https://victim.example/users/alice",
        username="alice",
        public_key=pubkey,
    )
    # The attacker serves a copy of the victim actor with its own key
    respx_mock.get("https://evil.example/users/alice").mock(
        return_value=httpx.Response(200, json=victim.ap_actor)
    )
    k = Key(victim.ap_id, "https://evil.example/users/alice#main-key")
    k.load(privkey)

    httpsig_info = await httpsig.verify_signature(
        "POST", "/inbox", sign_request(k, _BODY), _BODY
    )

    assert httpsig_info.has_valid_signature is False
    assert httpsig_info.signed_by_ap_actor_id is None
