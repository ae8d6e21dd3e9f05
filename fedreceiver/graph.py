"""Read access to the local accounts, contacts and posts.

The storage itself belongs to the embedding application, which provides a
`GraphStore` implementation. Implementations must tolerate concurrent reads
from several inbox workers.
"""
import enum
from dataclasses import dataclass

from fedreceiver import activitypub as ap


class Rel(enum.IntEnum):
    FOLLOWER = 1  # the contact follows the local account
    SHARING = 2  # the local account follows the contact
    FRIEND = 3


class ContactType(enum.IntEnum):
    PERSON = 0
    ORGANISATION = 1
    NEWS = 2
    COMMUNITY = 3


class Network(str, enum.Enum):
    ACTIVITYPUB = "apub"
    DFRN = "dfrn"
    DIASPORA = "dspr"
    OSTATUS = "stat"


FEDERATED_NETWORKS = frozenset(Network)
LEGACY_NETWORKS = frozenset({Network.OSTATUS})


@dataclass(frozen=True)
class LocalAccount:
    uid: int
    url: str
    contact_type: ContactType = ContactType.PERSON

    @property
    def is_community(self) -> bool:
        return self.contact_type == ContactType.COMMUNITY


@dataclass(frozen=True)
class Contact:
    id: int
    uid: int
    url: str
    rel: Rel
    network: Network = Network.ACTIVITYPUB
    is_archived: bool = False
    is_pending: bool = False

    @property
    def is_active(self) -> bool:
        return (
            self.network in FEDERATED_NETWORKS
            and not self.is_archived
            and not self.is_pending
        )


class GraphStore:
    async def get_account(self, uid: int) -> LocalAccount | None:
        raise NotImplementedError

    async def get_account_by_url(self, url: str) -> LocalAccount | None:
        """Matches `url` against the local profile URLs using
        `utils.url.normalize_link`."""
        raise NotImplementedError

    async def get_contact(self, uid: int, url: str) -> Contact | None:
        """Contact of account `uid` (`0` for the public contact) for the
        remote actor `url`, matched on its normalized URL or its alias."""
        raise NotImplementedError

    async def get_contacts_for_actor(self, url: str) -> list[Contact]:
        """Every contact a local account (`uid != 0`) has for `url`."""
        raise NotImplementedError

    async def get_post_owners(self, uris: list[str]) -> list[int]:
        """Local accounts hosting a post at one of `uris`."""
        raise NotImplementedError

    async def post_exists(self, uri: str) -> bool:
        """True if a top-level post or a comment is stored at `uri`."""
        raise NotImplementedError

    async def get_uri_by_link(self, link: str) -> str | None:
        """Canonical URI of the post whose URI or permalink is `link`."""
        raise NotImplementedError

    async def get_stored_object(self, uri: str) -> ap.RawObject | None:
        """ActivityPub representation of a locally stored post."""
        raise NotImplementedError

    async def private_thread_exists(self, uri: str) -> bool:
        raise NotImplementedError
