import json
from typing import Any

import httpx
from loguru import logger

from fedreceiver import config
from fedreceiver.utils.url import check_url

RawObject = dict[str, Any]
AS_CTX = "https://www.w3.org/ns/activitystreams"
AS_PUBLIC = "https://www.w3.org/ns/activitystreams#Public"

# Compacted (see `fedreceiver.jsonld.COMPACTION_CONTEXT`) names
PUBLIC_COLLECTION = "as:Public"
PUBLIC_COLLECTION_ALIASES = {PUBLIC_COLLECTION, AS_PUBLIC, "Public"}

ACTOR_TYPES = ["Application", "Group", "Organization", "Person", "Service"]

ACCOUNT_TYPES = [
    "as:Person",
    "as:Organization",
    "as:Service",
    "as:Group",
    "as:Application",
]
CONTENT_TYPES = [
    "as:Note",
    "as:Article",
    "as:Video",
    "as:Image",
    "as:Event",
    "as:Audio",
    "as:Page",
    "as:Question",
]
ACTIVITY_TYPES = [
    "as:Like",
    "as:Dislike",
    "as:Accept",
    "as:Reject",
    "as:TentativeAccept",
]

# Activities that Lemmy wraps in an Announce
ANNOUNCEABLE_ACTIVITY_TYPES = ACTIVITY_TYPES + ["as:Delete", "as:Undo", "as:Update"]

# We don't process them, but we don't want them to be reported as unhandled
IGNORABLE_TYPES = ["pt:CacheFile"]


class FetchError(Exception):
    def __init__(self, url: str, resp: httpx.Response | None = None) -> None:
        resp_part = ""
        if resp:
            resp_part = f", got HTTP {resp.status_code}: {resp.text}"
        message = f"Failed to fetch {url}{resp_part}"
        super().__init__(message)
        self.resp = resp
        self.url = url


class ObjectIsGoneError(FetchError):
    pass


class ObjectNotFoundError(FetchError):
    pass


class ObjectUnavailableError(FetchError):
    pass


class NotAnObjectError(Exception):
    def __init__(self, url: str, resp: httpx.Response | None = None) -> None:
        message = f"{url} is not an AP activity"
        super().__init__(message)
        self.url = url
        self.resp = resp


async def fetch(
    url: str,
    params: dict[str, Any] | None = None,
    auth: httpx.Auth | None = None,
) -> RawObject:
    logger.info(f"Fetching {url} ({params=})")
    check_url(url)

    async with httpx.AsyncClient(timeout=config.FETCH_TIMEOUT) as client:
        resp = await client.get(
            url,
            headers={
                "User-Agent": config.USER_AGENT,
                "Accept": config.AP_CONTENT_TYPE,
            },
            params=params,
            follow_redirects=True,
            auth=auth,
        )

    # Special handling for deleted object
    if resp.status_code == 410:
        raise ObjectIsGoneError(url, resp)
    elif resp.status_code in [401, 403]:
        raise ObjectUnavailableError(url, resp)
    elif resp.status_code == 404:
        raise ObjectNotFoundError(url, resp)

    try:
        resp.raise_for_status()
    except httpx.HTTPError as http_error:
        raise FetchError(url, resp) from http_error

    try:
        payload = resp.json()
    except json.JSONDecodeError:
        raise NotAnObjectError(url, resp)

    if not isinstance(payload, dict):
        raise NotAnObjectError(url, resp)

    return payload


def as_list(val: Any | list[Any]) -> list[Any]:
    if isinstance(val, list):
        return val

    return [val]


def get_id(val: str | dict[str, Any]) -> str:
    if isinstance(val, dict):
        val = val["id"]

    if not isinstance(val, str):
        raise ValueError(f"Invalid ID type: {val}")

    return val


def is_public(receiver: str) -> bool:
    return receiver in PUBLIC_COLLECTION_ALIASES
