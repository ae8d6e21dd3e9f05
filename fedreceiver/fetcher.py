from typing import Callable

import httpx
from loguru import logger

from fedreceiver import activitypub as ap
from fedreceiver.httpsig import HTTPXSigAuth
from fedreceiver.key import Key
from fedreceiver.utils.url import InvalidURLError

KeyProvider = Callable[[int], Key | None]


class Fetcher:
    async def fetch(self, url: str, uid: int = 0) -> ap.RawObject | None:
        """Returns the raw document at `url`, or `None` if it can't be fetched.

        A non-zero `uid` signs the request as that local account.
        """
        raise NotImplementedError


class HTTPFetcher(Fetcher):
    def __init__(self, key_provider: KeyProvider | None = None) -> None:
        self._key_provider = key_provider

    def _auth_for(self, uid: int) -> httpx.Auth | None:
        if not uid or not self._key_provider:
            return None

        if key := self._key_provider(uid):
            return HTTPXSigAuth(key)

        return None

    async def fetch(self, url: str, uid: int = 0) -> ap.RawObject | None:
        try:
            return await ap.fetch(url, auth=self._auth_for(uid))
        except (ap.ObjectIsGoneError, ap.ObjectNotFoundError):
            logger.info(f"{url} is gone or not found")
        except (ap.FetchError, ap.NotAnObjectError, InvalidURLError) as exc:
            logger.info(f"Failed to fetch {url}: {exc}")
        except httpx.HTTPError as http_error:
            logger.warning(f"Failed to fetch {url}: {http_error!r}")

        return None


class BoundedFetcher(Fetcher):
    """Caps the number of fetches made while processing one delivery."""

    def __init__(self, fetcher: Fetcher, budget: int) -> None:
        self._fetcher = fetcher
        self.budget = budget
        self.attempts = 0

    @property
    def is_exhausted(self) -> bool:
        return self.attempts >= self.budget

    async def fetch(self, url: str, uid: int = 0) -> ap.RawObject | None:
        if self.is_exhausted:
            logger.warning(f"Fetch budget of {self.budget} exhausted, skipping {url}")
            return None

        self.attempts += 1
        return await self._fetcher.fetch(url, uid)
