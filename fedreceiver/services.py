import asyncio
import dataclasses
from dataclasses import dataclass
from dataclasses import field

from fedreceiver.actor import IdentityStore
from fedreceiver.config import MAX_FETCHES_PER_DELIVERY
from fedreceiver.fetcher import BoundedFetcher
from fedreceiver.fetcher import Fetcher
from fedreceiver.graph import GraphStore
from fedreceiver.handlers import ActivityHandlers


@dataclass(frozen=True)
class ContactUpgrade:
    contact_id: int
    uid: int
    url: str


@dataclass(frozen=True)
class Delivery:
    body: bytes
    headers: dict[str, str]
    uid: int = 0
    method: str = "POST"
    path: str = "/inbox"


@dataclass(frozen=True)
class Services:
    """Collaborators used while processing deliveries."""

    graph: GraphStore
    identities: IdentityStore
    handlers: ActivityHandlers
    fetcher: Fetcher
    deliveries: "asyncio.Queue[Delivery]" = field(default_factory=asyncio.Queue)
    contact_upgrades: "asyncio.Queue[ContactUpgrade]" = field(
        default_factory=asyncio.Queue
    )

    def for_delivery(self) -> "Services":
        """Copy whose fetcher is capped for a single delivery."""
        return dataclasses.replace(
            self,
            fetcher=BoundedFetcher(self.fetcher, MAX_FETCHES_PER_DELIVERY),
        )
