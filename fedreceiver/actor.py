from datetime import datetime
from functools import cached_property
from typing import MutableMapping

from cachetools import LRUCache
from cachetools import TTLCache
from loguru import logger

from fedreceiver import activitypub as ap
from fedreceiver.fetcher import Fetcher
from fedreceiver.utils.datetime import now
from fedreceiver.utils.url import get_hostname


class RemoteActor:
    def __init__(self, ap_actor: ap.RawObject) -> None:
        if (ap_type := ap_actor.get("type")) not in ap.ACTOR_TYPES:
            raise ValueError(f"Unexpected actor type: {ap_type}")
        if not isinstance(ap_actor.get("id"), str):
            raise ValueError(f"Invalid actor ID {ap_actor.get('id')}")

        self._ap_actor = ap_actor
        self._ap_type = ap_type

    @property
    def ap_actor(self) -> ap.RawObject:
        return self._ap_actor

    @property
    def ap_type(self) -> str:
        return self._ap_type

    @property
    def ap_id(self) -> str:
        return ap.get_id(self.ap_actor["id"])

    @property
    def preferred_username(self) -> str | None:
        return self.ap_actor.get("preferredUsername")

    @property
    def followers_collection_id(self) -> str | None:
        return self.ap_actor.get("followers")

    @property
    def is_group(self) -> bool:
        return self.ap_type == "Group"

    @property
    def is_relay(self) -> bool:
        return self.ap_type == "Application" and self.preferred_username == "relay"

    @cached_property
    def server(self) -> str:
        return get_hostname(self.ap_id)  # type: ignore


class IdentityStore:
    async def get_actor_by_url(
        self,
        url: str,
        only_cached: bool = False,
    ) -> RemoteActor | None:
        raise NotImplementedError

    async def mark_active(self, actor: RemoteActor) -> None:
        """Called when an actor successfully delivered something."""
        raise NotImplementedError


class FetchingIdentityStore(IdentityStore):
    def __init__(
        self,
        fetcher: Fetcher,
        maxsize: int = 1024,
        ttl: float = 3600,
    ) -> None:
        self._fetcher = fetcher
        self._cache: MutableMapping[str, RemoteActor] = TTLCache(maxsize, ttl)
        self.last_seen: MutableMapping[str, datetime] = LRUCache(maxsize)

    async def get_actor_by_url(
        self,
        url: str,
        only_cached: bool = False,
    ) -> RemoteActor | None:
        if cached_actor := self._cache.get(url):
            return cached_actor

        if only_cached:
            return None

        raw_actor = await self._fetcher.fetch(url)
        if not raw_actor:
            return None

        try:
            actor = RemoteActor(raw_actor)
        except ValueError:
            logger.info(f"{url} is not an actor")
            return None

        if actor.ap_id != url:
            logger.warning(f"{url} returned an actor with ID {actor.ap_id}")
            return None

        self._cache[url] = actor
        return actor

    async def mark_active(self, actor: RemoteActor) -> None:
        self.last_seen[actor.ap_id] = now()
