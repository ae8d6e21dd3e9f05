import base64
from copy import deepcopy
from typing import Any

import httpx
from Crypto.Hash import SHA256
from Crypto.Signature import PKCS1_v1_5

from fedreceiver import activitypub as ap
from fedreceiver import httpsig
from fedreceiver import ldsig
from fedreceiver.actor import IdentityStore
from fedreceiver.actor import RemoteActor
from fedreceiver.ap_object import ObjectData
from fedreceiver.fetcher import Fetcher
from fedreceiver.graph import Contact
from fedreceiver.graph import ContactType
from fedreceiver.graph import GraphStore
from fedreceiver.graph import LocalAccount
from fedreceiver.graph import Network
from fedreceiver.graph import Rel
from fedreceiver.handlers import ActivityHandlers
from fedreceiver.handlers import Completion
from fedreceiver.handlers import Item
from fedreceiver.handlers import PostReason
from fedreceiver.handlers import Verb
from fedreceiver.key import Key
from fedreceiver.services import Services
from fedreceiver.utils.datetime import now
from fedreceiver.utils.url import compare_link


class FakeGraphStore(GraphStore):
    def __init__(self) -> None:
        self.accounts: dict[int, LocalAccount] = {}
        self.contacts: list[Contact] = []
        self.posts: dict[str, set[int]] = {}
        self.links: dict[str, str] = {}
        self.stored_objects: dict[str, ap.RawObject] = {}
        self.private_threads: set[str] = set()

    def add_account(
        self,
        uid: int,
        url: str,
        contact_type: ContactType = ContactType.PERSON,
    ) -> LocalAccount:
        account = LocalAccount(uid=uid, url=url, contact_type=contact_type)
        self.accounts[uid] = account
        return account

    def add_contact(
        self,
        uid: int,
        url: str,
        rel: Rel = Rel.SHARING,
        **kwargs: Any,
    ) -> Contact:
        contact = Contact(
            id=len(self.contacts) + 1,
            uid=uid,
            url=url,
            rel=rel,
            **kwargs,
        )
        self.contacts.append(contact)
        return contact

    def add_post(self, uri: str, *owners: int, link: str | None = None) -> None:
        self.posts.setdefault(uri, set()).update(owners)
        if link:
            self.links[link] = uri

    async def get_account(self, uid: int) -> LocalAccount | None:
        return self.accounts.get(uid)

    async def get_account_by_url(self, url: str) -> LocalAccount | None:
        for account in self.accounts.values():
            if compare_link(account.url, url):
                return account
        return None

    async def get_contact(self, uid: int, url: str) -> Contact | None:
        for contact in self.contacts:
            if contact.uid == uid and compare_link(contact.url, url):
                return contact
        return None

    async def get_contacts_for_actor(self, url: str) -> list[Contact]:
        return [
            contact
            for contact in self.contacts
            if contact.uid != 0 and compare_link(contact.url, url)
        ]

    async def get_post_owners(self, uris: list[str]) -> list[int]:
        owners: set[int] = set()
        for uri in uris:
            owners.update(self.posts.get(uri, set()))
        return sorted(owners)

    async def post_exists(self, uri: str) -> bool:
        return uri in self.posts

    async def get_uri_by_link(self, link: str) -> str | None:
        if link in self.links:
            return self.links[link]
        if link in self.posts:
            return link
        return None

    async def get_stored_object(self, uri: str) -> ap.RawObject | None:
        return deepcopy(self.stored_objects.get(uri))

    async def private_thread_exists(self, uri: str) -> bool:
        return uri in self.private_threads


class FakeIdentityStore(IdentityStore):
    def __init__(self) -> None:
        self.actors: dict[str, RemoteActor] = {}
        self.cached: set[str] = set()
        self.active: list[str] = []

    def add(self, actor: RemoteActor, cached: bool = True) -> RemoteActor:
        self.actors[actor.ap_id] = actor
        if cached:
            self.cached.add(actor.ap_id)
        return actor

    async def get_actor_by_url(
        self,
        url: str,
        only_cached: bool = False,
    ) -> RemoteActor | None:
        if only_cached and url not in self.cached:
            return None
        return self.actors.get(url)

    async def mark_active(self, actor: RemoteActor) -> None:
        self.active.append(actor.ap_id)


class FakeFetcher(Fetcher):
    def __init__(self) -> None:
        self.documents: dict[str, ap.RawObject] = {}
        self.calls: list[tuple[str, int]] = []

    def add(self, document: ap.RawObject, url: str | None = None) -> None:
        self.documents[url or document["id"]] = document

    async def fetch(self, url: str, uid: int = 0) -> ap.RawObject | None:
        self.calls.append((url, uid))
        return deepcopy(self.documents.get(url))


class RecordingHandlers(ActivityHandlers):
    """Records the calls, `create_item` returns an item unless disabled."""

    def __init__(self, create_items: bool = True) -> None:
        self.calls: list[tuple[str, ObjectData, Any]] = []
        self.create_items = create_items
        self.fetched_ids: dict[str, str] = {}
        self.upgraded_contacts: list[tuple[int, int, str]] = []

    @property
    def called(self) -> list[str]:
        return [name for name, _, _ in self.calls]

    def _record(self, name: str, object_data: ObjectData, extra: Any = None) -> None:
        self.calls.append((name, object_data, extra))

    async def create_item(self, object_data: ObjectData) -> Item | None:
        self._record("create_item", object_data)
        if not self.create_items:
            return None
        return {"uri": object_data.id}

    async def post_item(
        self,
        object_data: ObjectData,
        item: Item,
        reason: PostReason = PostReason.NONE,
    ) -> None:
        self._record("post_item", object_data, reason)

    async def update_item(self, object_data: ObjectData) -> None:
        self._record("update_item", object_data)

    async def delete_item(self, object_data: ObjectData) -> None:
        self._record("delete_item", object_data)

    async def create_activity(self, object_data: ObjectData, verb: Verb) -> None:
        self._record("create_activity", object_data, verb)

    async def undo_activity(self, object_data: ObjectData) -> None:
        self._record("undo_activity", object_data)

    async def update_person(self, object_data: ObjectData) -> None:
        self._record("update_person", object_data)

    async def delete_person(self, object_data: ObjectData) -> None:
        self._record("delete_person", object_data)

    async def block_account(self, object_data: ObjectData) -> None:
        self._record("block_account", object_data)

    async def unblock_account(self, object_data: ObjectData) -> None:
        self._record("unblock_account", object_data)

    async def follow_user(self, object_data: ObjectData) -> None:
        self._record("follow_user", object_data)

    async def accept_follow_user(self, object_data: ObjectData) -> None:
        self._record("accept_follow_user", object_data)

    async def reject_follow_user(self, object_data: ObjectData) -> None:
        self._record("reject_follow_user", object_data)

    async def undo_follow_user(self, object_data: ObjectData) -> None:
        self._record("undo_follow_user", object_data)

    async def add_tag(self, object_data: ObjectData) -> None:
        self._record("add_tag", object_data)

    async def add_to_featured_collection(self, object_data: ObjectData) -> None:
        self._record("add_to_featured_collection", object_data)

    async def remove_from_featured_collection(self, object_data: ObjectData) -> None:
        self._record("remove_from_featured_collection", object_data)

    async def fetch_missing_activity(
        self,
        url: str,
        relay_actor: str,
        completion: Completion,
    ) -> str | None:
        self.calls.append(
            ("fetch_missing_activity", ObjectData(id=url), (relay_actor, completion))
        )
        return self.fetched_ids.get(url)

    async def upgrade_contact(self, contact_id: int, uid: int, url: str) -> None:
        self.upgraded_contacts.append((contact_id, uid, url))


def build_services(
    graph: GraphStore,
    identities: IdentityStore,
    handlers: ActivityHandlers,
    fetcher: Fetcher,
) -> Services:
    return Services(
        graph=graph,
        identities=identities,
        handlers=handlers,
        fetcher=fetcher,
    )


def generate_ld_signature(doc: ap.RawObject, key: Key) -> None:
    """Adds a RsaSignature2017 signature made with `key` to `doc`."""
    options = {
        "type": "RsaSignature2017",
        "creator": key.key_id(),
        "created": now().replace(microsecond=0).isoformat().replace("+00:00", "Z"),
    }
    doc["signature"] = options
    to_be_signed = ldsig._options_hash(doc) + ldsig._doc_hash(doc)

    signer = PKCS1_v1_5.new(key.privkey)
    digest = SHA256.new()
    digest.update(to_be_signed.encode("utf-8"))
    sig = base64.b64encode(signer.sign(digest))  # type: ignore
    options["signatureValue"] = sig.decode("utf-8")


def sign_request(
    key: Key,
    body: bytes,
    url: str = "https://local.test/inbox",
) -> dict[str, str]:
    """Returns the headers of a POST request signed with `key`."""
    request = httpx.Request(
        "POST",
        url,
        content=body,
        headers={
            "Content-Type": "application/activity+json",
            "User-Agent": "remote-server/1.0",
        },
    )
    signed_request = next(httpsig.HTTPXSigAuth(key).auth_flow(request))
    return dict(signed_request.headers)
