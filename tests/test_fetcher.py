import httpx
import pytest
import respx

from fedreceiver.fetcher import BoundedFetcher
from fedreceiver.fetcher import HTTPFetcher
from fedreceiver.key import Key
from tests import factories

_NOTE_ID = "https://example.com/note/1"
_NOTE = {"type": "Note", "id": _NOTE_ID}


@pytest.mark.asyncio
async def test_http_fetcher(respx_mock: respx.MockRouter) -> None:
    route = respx_mock.get(_NOTE_ID).mock(
        return_value=httpx.Response(200, json=_NOTE)
    )

    assert await HTTPFetcher().fetch(_NOTE_ID) == _NOTE
    assert "Signature" not in route.calls.last.request.headers


@pytest.mark.asyncio
async def test_http_fetcher__signed_as_a_local_account(
    respx_mock: respx.MockRouter,
) -> None:
    privkey, _ = factories.generate_key()
    k = Key("https://local.test/profile/bob", "https://local.test/profile/bob#main-key")
    k.load(privkey)
    route = respx_mock.get(_NOTE_ID).mock(
        return_value=httpx.Response(200, json=_NOTE)
    )
    fetcher = HTTPFetcher(key_provider=lambda uid: k if uid == 1 else None)

    assert await fetcher.fetch(_NOTE_ID, 1) == _NOTE
    signature = route.calls.last.request.headers["Signature"]
    assert 'keyId="https://local.test/profile/bob#main-key"' in signature

    # Unknown accounts fetch anonymously
    await fetcher.fetch(_NOTE_ID, 2)
    assert "Signature" not in route.calls.last.request.headers


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(404),
        httpx.Response(410),
        httpx.Response(403),
        httpx.Response(500),
        httpx.Response(200, text="not json"),
        httpx.Response(200, json=["a", "list"]),
    ],
)
async def test_http_fetcher__failures(
    respx_mock: respx.MockRouter,
    response: httpx.Response,
) -> None:
    respx_mock.get(_NOTE_ID).mock(return_value=response)

    assert await HTTPFetcher().fetch(_NOTE_ID) is None


@pytest.mark.asyncio
async def test_http_fetcher__network_error(respx_mock: respx.MockRouter) -> None:
    respx_mock.get(_NOTE_ID).mock(side_effect=httpx.ConnectError)

    assert await HTTPFetcher().fetch(_NOTE_ID) is None


@pytest.mark.asyncio
async def test_bounded_fetcher(fetcher) -> None:
    fetcher.add({"type": "Note", "id": _NOTE_ID})
    bounded = BoundedFetcher(fetcher, budget=2)

    assert await bounded.fetch(_NOTE_ID) is not None
    assert await bounded.fetch("https://example.com/missing") is None
    assert bounded.is_exhausted is True
    assert await bounded.fetch(_NOTE_ID) is None
    assert len(fetcher.calls) == 2
