"""Linked Data Signatures (RsaSignature2017) embedded in activities."""
import base64
import hashlib

import httpx
from Crypto.Hash import SHA256
from Crypto.Signature import PKCS1_v1_5
from loguru import logger
from pyld import jsonld  # type: ignore

from fedreceiver import activitypub as ap
from fedreceiver import jsonld as _jsonld  # noqa: F401  installs the document loader
from fedreceiver.httpsig import _get_public_key
from fedreceiver.utils.url import InvalidURLError


def _options_hash(doc: ap.RawObject) -> str:
    doc = dict(doc["signature"])
    for k in ["type", "id", "signatureValue"]:
        if k in doc:
            del doc[k]
    doc["@context"] = "https://w3id.org/security/v1"
    normalized = jsonld.normalize(
        doc, {"algorithm": "URDNA2015", "format": "application/nquads"}
    )
    h = hashlib.new("sha256")
    h.update(normalized.encode("utf-8"))
    return h.hexdigest()


def _doc_hash(doc: ap.RawObject) -> str:
    doc = dict(doc)
    if "signature" in doc:
        del doc["signature"]
    normalized = jsonld.normalize(
        doc, {"algorithm": "URDNA2015", "format": "application/nquads"}
    )
    h = hashlib.new("sha256")
    h.update(normalized.encode("utf-8"))
    return h.hexdigest()


def is_signed(doc: ap.RawObject) -> bool:
    return isinstance(doc.get("signature"), dict)


async def get_signer(doc: ap.RawObject) -> str | None:
    """Returns the owner of the key that produced a valid signature."""
    if not is_signed(doc):
        logger.info("The object does not contain a signature")
        return None

    key_id = doc["signature"].get("creator")
    signature = doc["signature"].get("signatureValue")
    if not isinstance(key_id, str) or not isinstance(signature, str):
        logger.info(f"Incomplete signature {doc['signature']}")
        return None

    try:
        key = await _get_public_key(key_id)
    except (
        ap.FetchError,
        ap.NotAnObjectError,
        InvalidURLError,
        ValueError,
        httpx.HTTPError,
    ):
        logger.exception(f"Failed to fetch LD sig key {key_id}")
        return None

    try:
        to_be_signed = _options_hash(doc) + _doc_hash(doc)
    except jsonld.JsonLdError:
        logger.exception("Failed to normalize the signed document")
        return None

    signer = PKCS1_v1_5.new(key.pubkey)
    digest = SHA256.new()
    digest.update(to_be_signed.encode("utf-8"))
    try:
        is_valid = signer.verify(digest, base64.b64decode(signature))
    except ValueError:
        is_valid = False

    if not is_valid:
        logger.info(f"Invalid LD signature from {key_id}")
        return None

    return key.owner
