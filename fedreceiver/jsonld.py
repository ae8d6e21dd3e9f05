"""JSON-LD compaction and helpers to read compacted documents."""
from typing import Any
from typing import MutableMapping

from cachetools import LRUCache
from loguru import logger
from pyld import jsonld  # type: ignore
from pyld.documentloader.requests import requests_document_loader  # type: ignore

from fedreceiver import activitypub as ap

COMPACTION_CONTEXT = {
    "as": "https://www.w3.org/ns/activitystreams#",
    "w3id": "https://w3id.org/security#",
    "diaspora": "https://diasporafoundation.org/ns/",
    "ostatus": "http://ostatus.org#",
    "dc": "http://purl.org/dc/terms/",
    "toot": "http://joinmastodon.org/ns#",
    "litepub": "http://litepub.social/ns#",
    "sc": "http://schema.org#",
    "pt": "https://joinpeertube.org/ns#",
}

_CONTEXT_CACHE: MutableMapping[str, dict[str, Any]] = LRUCache(64)

requests_loader = requests_document_loader()


def _loader(url: str, options: dict[str, Any] | None = None) -> dict[str, Any]:
    if cached_context := _CONTEXT_CACHE.get(url):
        return cached_context

    options = options or {}
    # See https://github.com/digitalbazaar/pyld/issues/133
    options.setdefault("headers", {})["Accept"] = "application/ld+json"

    # XXX: temp fix/hack is it seems to be down for now
    if url == "https://w3id.org/identity/v1":
        url = (
            "https://raw.githubusercontent.com/web-payments/web-payments.org"
            "/master/contexts/identity-v1.jsonld"
        )
    remote_document = requests_loader(url, options)
    _CONTEXT_CACHE[url] = remote_document
    return remote_document


jsonld.set_document_loader(_loader)


def compact(raw_object: ap.RawObject) -> ap.RawObject:
    try:
        compacted = jsonld.compact(raw_object, {"@context": COMPACTION_CONTEXT})
    except jsonld.JsonLdError:
        logger.exception(f"Failed to compact {raw_object.get('id')}")
        return {}

    return compacted


def value_of(value: Any) -> Any:
    """Unwraps `{"@value": ...}` and `{"@id": ...}` nodes."""
    if isinstance(value, dict):
        if "@value" in value:
            return value["@value"]
        if "@id" in value:
            return value["@id"]
        return None
    return value


def _matches(item: Any, type_key: str | None, type_value: str | None) -> bool:
    if type_key is None:
        return True

    if not isinstance(item, dict):
        return False

    return type_value in [value_of(v) for v in ap.as_list(item.get(type_key))]


def _is_empty(value: Any) -> bool:
    return value is None or (
        isinstance(value, (str, list, dict)) and not value  # type: ignore
    )


def fetch_element(
    doc: Any,
    element: str,
    key: str | None = "@id",
    type_key: str | None = None,
    type_value: str | None = None,
) -> Any:
    """Returns the first `key` value of `element`, optionally only considering
    nodes where `type_key` is `type_value`.

    Scalar values are returned as-is.
    """
    if not isinstance(doc, dict) or _is_empty(value := doc.get(element)):
        return None

    for item in ap.as_list(value):
        if isinstance(item, dict):
            if not _matches(item, type_key, type_value):
                continue

            if key is None:
                return item

            if not _is_empty(item.get(key)):
                return item[key]
        elif type_key is None and not _is_empty(item):
            return item

    return None


def fetch_element_array(
    doc: Any,
    element: str,
    key: str | None = None,
    type_key: str | None = None,
    type_value: str | None = None,
) -> list[Any] | None:
    if not isinstance(doc, dict) or _is_empty(value := doc.get(element)):
        return None

    elements = []
    for item in ap.as_list(value):
        if isinstance(item, dict):
            if not _matches(item, type_key, type_value):
                continue

            if key is None:
                elements.append(item)
            elif not _is_empty(item.get(key)):
                elements.append(item[key])
        elif type_key is None and not _is_empty(item):
            elements.append(item)

    return elements


def fetch_type(doc: Any) -> str | None:
    ap_type = fetch_element(doc, "@type")
    if isinstance(ap_type, str):
        return ap_type
    return None
