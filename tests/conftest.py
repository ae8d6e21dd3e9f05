from typing import Any
from typing import Generator

import pytest

from fedreceiver import activitypub as ap
from fedreceiver import httpsig
from fedreceiver import jsonld
from tests.utils import FakeFetcher
from tests.utils import FakeGraphStore
from tests.utils import FakeIdentityStore
from tests.utils import RecordingHandlers
from tests.utils import build_services

SECURITY_CTX = "https://w3id.org/security/v1"

# Offline versions of the contexts used by the test documents
_CONTEXTS: dict[str, dict[str, Any]] = {
    ap.AS_CTX: {
        "@context": {
            "@vocab": "https://www.w3.org/ns/activitystreams#",
            "as": "https://www.w3.org/ns/activitystreams#",
            "toot": "http://joinmastodon.org/ns#",
            "litepub": "http://litepub.social/ns#",
            "id": "@id",
            "type": "@type",
            "actor": {"@id": "as:actor", "@type": "@id"},
            "object": {"@id": "as:object", "@type": "@id"},
            "target": {"@id": "as:target", "@type": "@id"},
            "attributedTo": {"@id": "as:attributedTo", "@type": "@id"},
            "inReplyTo": {"@id": "as:inReplyTo", "@type": "@id"},
            "to": {"@id": "as:to", "@type": "@id"},
            "cc": {"@id": "as:cc", "@type": "@id"},
            "bto": {"@id": "as:bto", "@type": "@id"},
            "bcc": {"@id": "as:bcc", "@type": "@id"},
            "url": {"@id": "as:url", "@type": "@id"},
            "href": {"@id": "as:href", "@type": "@id"},
            "followers": {"@id": "as:followers", "@type": "@id"},
            "following": {"@id": "as:following", "@type": "@id"},
            "inbox": {"@id": "ldp:inbox", "@type": "@id"},
            "outbox": {"@id": "as:outbox", "@type": "@id"},
            "ldp": "http://www.w3.org/ns/ldp#",
            "Emoji": "toot:Emoji",
            "EmojiReact": "litepub:EmojiReact",
            "directMessage": "litepub:directMessage",
        }
    },
    SECURITY_CTX: {
        "@context": {
            "id": "@id",
            "type": "@type",
            "dc": "http://purl.org/dc/terms/",
            "sec": "https://w3id.org/security#",
            "xsd": "http://www.w3.org/2001/XMLSchema#",
            "creator": {"@id": "dc:creator", "@type": "@id"},
            "created": {"@id": "dc:created", "@type": "xsd:dateTime"},
            "nonce": "sec:nonce",
            "signatureValue": "sec:signatureValue",
        }
    },
}


@pytest.fixture(autouse=True)
def offline_jsonld_contexts() -> Generator:
    for url, document in _CONTEXTS.items():
        jsonld._CONTEXT_CACHE[url] = {
            "contentType": "application/ld+json",
            "contextUrl": None,
            "documentUrl": url,
            "document": document,
        }
    yield
    jsonld._CONTEXT_CACHE.clear()


@pytest.fixture(autouse=True)
def allow_test_urls(monkeypatch) -> None:
    # Test hostnames don't resolve
    monkeypatch.setattr(ap, "check_url", lambda url: None)


@pytest.fixture(autouse=True)
def clear_key_cache() -> Generator:
    httpsig._KEY_CACHE.clear()
    yield
    httpsig._KEY_CACHE.clear()


@pytest.fixture
def graph() -> FakeGraphStore:
    return FakeGraphStore()


@pytest.fixture
def identities() -> FakeIdentityStore:
    return FakeIdentityStore()


@pytest.fixture
def handlers() -> RecordingHandlers:
    return RecordingHandlers()


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def services(graph, identities, handlers, fetcher):
    return build_services(graph, identities, handlers, fetcher)
