import base64
import hashlib
import typing
from dataclasses import dataclass
from datetime import datetime
from datetime import timedelta
from datetime import timezone
from typing import Any
from typing import Mapping
from typing import MutableMapping

import httpx
from cachetools import LFUCache
from Crypto.Hash import SHA256
from Crypto.Signature import PKCS1_v1_5
from dateutil.parser import parse
from loguru import logger

from fedreceiver import activitypub as ap
from fedreceiver.config import SIGNATURE_MAX_AGE_HOURS
from fedreceiver.key import Key
from fedreceiver.utils.datetime import now
from fedreceiver.utils.url import InvalidURLError
from fedreceiver.utils.url import get_hostname
from fedreceiver.utils.url import is_hostname_blocked

_KEY_CACHE: MutableMapping[str, Key] = LFUCache(256)


def _build_signed_string(
    signed_headers: str,
    method: str,
    path: str,
    headers: Any,
    body_digest: str | None,
    sig_data: dict[str, Any],
) -> tuple[str, datetime | None]:
    signature_date: datetime | None = None
    out = []
    for signed_header in signed_headers.split(" "):
        if signed_header == "(created)":
            signature_date = datetime.fromtimestamp(int(sig_data["created"])).replace(
                tzinfo=timezone.utc
            )
        elif signed_header == "date":
            signature_date = parse(headers["date"])

        if signed_header == "(request-target)":
            out.append("(request-target): " + method.lower() + " " + path)
        elif signed_header == "digest" and body_digest:
            out.append("digest: " + body_digest)
        elif signed_header in ["(created)", "(expires)"]:
            out.append(
                signed_header
                + ": "
                + sig_data[signed_header[1 : len(signed_header) - 1]]
            )
        else:
            out.append(signed_header + ": " + headers[signed_header])
    return "\n".join(out), signature_date


def _parse_sig_header(val: str | None) -> dict[str, str] | None:
    if not val:
        return None
    out = {}
    for data in val.split(","):
        k, v = data.strip().split("=", 1)
        out[k] = v[1 : len(v) - 1]  # noqa: black conflict
    return out


def _verify_h(signed_string, signature, pubkey):
    signer = PKCS1_v1_5.new(pubkey)
    digest = SHA256.new()
    digest.update(signed_string.encode("utf-8"))
    return signer.verify(digest, signature)


def _body_digest(body: bytes) -> str:
    h = hashlib.new("sha256")
    h.update(body)  # type: ignore
    return "SHA-256=" + base64.b64encode(h.digest()).decode("utf-8")


async def _get_public_key(key_id: str, should_skip_cache: bool = False) -> Key:
    if not should_skip_cache and (cached_key := _KEY_CACHE.get(key_id)):
        logger.info(f"Key {key_id} found in cache")
        return cached_key

    document = await ap.fetch(key_id)
    if document.get("type") == "Key":
        # The Key is not embedded in the Person, the owner must claim it
        standalone_key = Key.from_dict(document)
        if standalone_key.key_id() != key_id:
            raise ValueError(
                f"failed to fetch requested key {key_id}: "
                f"got {standalone_key.key_id()}"
            )
        owner = await ap.fetch(standalone_key.owner)
        k = Key.from_actor(owner)
        if k.owner != standalone_key.owner or k.key_id() != key_id:
            raise ValueError(f"{standalone_key.owner} does not own key {key_id}")
    else:
        k = Key.from_actor(document)
        # The actor must be served from the key URL
        if k.owner != key_id.split("#")[0] or key_id not in [k.key_id(), k.owner]:
            raise ValueError(
                f"failed to fetch requested key {key_id}: got {k.key_id()}"
            )

    _KEY_CACHE[key_id] = k
    return k


@dataclass(frozen=True)
class HTTPSigInfo:
    has_valid_signature: bool
    signed_by_ap_actor_id: str | None = None

    is_ap_actor_gone: bool = False
    is_unsupported_algorithm: bool = False
    is_expired: bool = False
    is_from_blocked_server: bool = False

    server: str | None = None


async def verify_signature(
    method: str,
    path: str,
    headers: Mapping[str, str],
    body: bytes,
) -> HTTPSigInfo:
    """Checks the HTTP signature of an incoming request."""
    request_headers = httpx.Headers(dict(headers))

    try:
        hsig = _parse_sig_header(request_headers.get("Signature"))
    except ValueError:
        logger.info("Malformed HTTP signature")
        return HTTPSigInfo(has_valid_signature=False)

    if not hsig:
        logger.info("No HTTP signature found")
        return HTTPSigInfo(has_valid_signature=False)

    try:
        key_id = hsig["keyId"]
    except KeyError:
        logger.info("Missing keyId")
        return HTTPSigInfo(
            has_valid_signature=False,
        )

    server = get_hostname(key_id)
    if server and is_hostname_blocked(server):
        return HTTPSigInfo(
            has_valid_signature=False,
            server=server,
            is_from_blocked_server=True,
        )

    if (alg := hsig.get("algorithm")) not in ["rsa-sha256", "hs2019"]:
        logger.info(f"Unsupported HTTP sig algorithm: {alg}")
        return HTTPSigInfo(
            has_valid_signature=False,
            is_unsupported_algorithm=True,
            server=server,
        )

    try:
        signed_string, signature_date = _build_signed_string(
            hsig.get("headers", "date"),
            method,
            path,
            request_headers,
            _body_digest(body) if body else None,
            hsig,
        )
    except (KeyError, ValueError, OverflowError):
        logger.info(f"Missing or invalid signed headers {hsig=}")
        return HTTPSigInfo(has_valid_signature=False, server=server)

    if signature_date and signature_date.tzinfo is None:
        signature_date = signature_date.replace(tzinfo=timezone.utc)

    # Sanity checks on the signature date
    if signature_date is None or now() - signature_date > timedelta(
        hours=SIGNATURE_MAX_AGE_HOURS
    ):
        logger.info(f"Signature expired: {signature_date=}")
        return HTTPSigInfo(
            has_valid_signature=False,
            is_expired=True,
            server=server,
        )

    try:
        k = await _get_public_key(key_id)
    except (ap.ObjectIsGoneError, ap.ObjectNotFoundError):
        logger.info("Actor is gone or not found")
        return HTTPSigInfo(has_valid_signature=False, is_ap_actor_gone=True)
    except (ap.FetchError, ap.NotAnObjectError, InvalidURLError, ValueError):
        logger.exception(f"Failed to fetch HTTP sig key {key_id}")
        return HTTPSigInfo(has_valid_signature=False, server=server)
    except httpx.HTTPError:
        logger.exception(f"Failed to fetch HTTP sig key {key_id}")
        return HTTPSigInfo(has_valid_signature=False, server=server)

    try:
        signature = base64.b64decode(hsig["signature"])
    except (KeyError, ValueError):
        logger.info("Missing or undecodable signature value")
        return HTTPSigInfo(has_valid_signature=False, server=server)

    has_valid_signature = _verify_h(signed_string, signature, k.pubkey)

    # If the signature is not valid, the remote actor may have rotated its key
    if not has_valid_signature:
        logger.info("Invalid signature, trying to refresh the key")
        try:
            k = await _get_public_key(key_id, should_skip_cache=True)
            has_valid_signature = _verify_h(signed_string, signature, k.pubkey)
        except (ap.FetchError, ap.NotAnObjectError, ValueError, httpx.HTTPError):
            logger.exception("Failed to refresh the key")

    httpsig_info = HTTPSigInfo(
        has_valid_signature=has_valid_signature,
        signed_by_ap_actor_id=k.owner if has_valid_signature else None,
        server=server,
    )
    if has_valid_signature:
        logger.info(f"Valid HTTP signature for {httpsig_info.signed_by_ap_actor_id}")
    else:
        logger.warning(f"Invalid HTTP signature from {key_id}")
    return httpsig_info


class HTTPXSigAuth(httpx.Auth):
    """Signs outgoing requests (used for fetches made on behalf of a local
    account)."""

    def __init__(self, key: Key) -> None:
        self.key = key

    def auth_flow(
        self, r: httpx.Request
    ) -> typing.Generator[httpx.Request, httpx.Response, None]:
        logger.info(f"keyid={self.key.key_id()}")

        bodydigest = None
        if r.content:
            bodydigest = _body_digest(r.content)

        date = datetime.now(timezone.utc).strftime("%a, %d %b %Y %H:%M:%S GMT")
        r.headers["Date"] = date
        if bodydigest:
            r.headers["Digest"] = bodydigest
            sigheaders = "(request-target) user-agent host date digest content-type"
        else:
            sigheaders = "(request-target) user-agent host date accept"

        to_be_signed, _ = _build_signed_string(
            sigheaders, r.method, r.url.path, r.headers, bodydigest, {}
        )
        if not self.key.privkey:
            raise ValueError(f"missing privkey on key {self.key.key_id()}")
        signer = PKCS1_v1_5.new(self.key.privkey)
        digest = SHA256.new()
        digest.update(to_be_signed.encode("utf-8"))
        sig = base64.b64encode(signer.sign(digest)).decode()

        key_id = self.key.key_id()
        sig_value = f'keyId="{key_id}",algorithm="rsa-sha256",headers="{sigheaders}",signature="{sig}"'  # noqa: E501
        logger.debug(f"signed request {sig_value=}")
        r.headers["Signature"] = sig_value
        yield r
