"""Resolves the local accounts an activity (or object) is addressed to."""
import enum
from dataclasses import dataclass
from dataclasses import field
from typing import Any

from loguru import logger

from fedreceiver import activitypub as ap
from fedreceiver import jsonld
from fedreceiver.graph import LEGACY_NETWORKS
from fedreceiver.graph import Rel
from fedreceiver.services import ContactUpgrade
from fedreceiver.services import Services
from fedreceiver.utils.url import compare_link


class ReceptionType(enum.IntEnum):
    UNKNOWN = 0
    TO = 1
    CC = 2
    BTO = 3
    BCC = 4
    FOLLOWER = 5
    ANSWER = 6
    GLOBAL = 7


# Classifications that an explicit addressing may still override
WEAK_RECEPTION_TYPES = frozenset(
    {
        ReceptionType.UNKNOWN,
        ReceptionType.FOLLOWER,
        ReceptionType.ANSWER,
        ReceptionType.GLOBAL,
    }
)

# Resolution order matters: the first explicit classification wins
AUDIENCE_ELEMENTS: dict[str, ReceptionType] = {
    "as:to": ReceptionType.TO,
    "as:cc": ReceptionType.CC,
    "as:bto": ReceptionType.BTO,
    "as:bcc": ReceptionType.BCC,
}

PUBLIC_UID = 0
_UNLISTED_UID = -1

ReceiverMap = dict[int, ReceptionType]
ReceiverURLs = dict[str, list[str]]


@dataclass
class Audience:
    receivers: ReceiverMap = field(default_factory=dict)
    unlisted: bool = False


def _is_mentioned(url: str, tags: list[dict[str, Any]]) -> bool:
    for tag in tags:
        if tag.get("type") != "Mention" or not tag.get("href"):
            continue

        if compare_link(tag["href"], url):
            return True

    return False


async def _add_followers(
    services: Services,
    actor: str,
    tags: list[dict[str, Any]],
    receivers: ReceiverMap,
    target_type: ReceptionType,
    is_group: bool,
) -> None:
    for contact in await services.graph.get_contacts_for_actor(actor):
        if contact.uid in receivers or not contact.is_active:
            continue

        # Group posts only reach the community accounts they mention
        if not is_group and contact.rel in [Rel.SHARING, Rel.FRIEND]:
            receivers[contact.uid] = target_type
            continue

        owner = await services.graph.get_account(contact.uid)
        if owner and owner.is_community and _is_mentioned(owner.url, tags):
            receivers[contact.uid] = target_type


async def _is_following(
    services: Services,
    uid: int,
    actor: str,
    rels: list[Rel],
) -> bool:
    contact = await services.graph.get_contact(uid, actor)
    return bool(contact and contact.is_active and contact.rel in rels)


async def _emit_contact_upgrades(
    services: Services,
    receivers: ReceiverMap,
    actor: str,
) -> None:
    for uid in receivers:
        contact = await services.graph.get_contact(uid, actor)
        if contact and contact.network in LEGACY_NETWORKS:
            logger.info(f"Contact {contact.id} of {uid=} uses a legacy protocol")
            services.contact_upgrades.put_nowait(
                ContactUpgrade(contact_id=contact.id, uid=uid, url=actor)
            )


async def get_receivers(
    services: Services,
    activity: ap.RawObject,
    actor: str | None,
    tags: list[dict[str, Any]] | None = None,
    fetch_unlisted: bool = False,
    upgrade_contacts: bool = True,
) -> Audience:
    tags = tags or []
    receivers: ReceiverMap = {}

    # Replies reach the accounts hosting the parent
    reply_to = jsonld.fetch_element(activity, "as:inReplyTo", "@id")
    reply = []
    if reply_to:
        reply.append(reply_to)
        # The reply may target a permalink instead of the URI
        if (fixed_reply_to := await services.graph.get_uri_by_link(reply_to)) and (
            fixed_reply_to != reply_to
        ):
            reply.append(fixed_reply_to)

    if object_id := jsonld.fetch_element(activity, "as:object", "@id"):
        reply.append(object_id)

    if reply:
        for uid in await services.graph.get_post_owners(reply):
            receivers[uid] = ReceptionType.ANSWER

    followers = None
    is_group = False
    if actor:
        profile = await services.identities.get_actor_by_url(actor)
        if profile:
            followers = profile.followers_collection_id
            is_group = profile.is_group
        logger.info(f"Got {actor=} with {followers=}")
    else:
        logger.info("Empty actor")

    # Prevent false follower assumptions upon thread completions
    if activity.get("thread_completion"):
        follower_type = ReceptionType.UNKNOWN
    else:
        follower_type = ReceptionType.FOLLOWER

    for element, list_type in AUDIENCE_ELEMENTS.items():
        for receiver in jsonld.fetch_element_array(activity, element, "@id") or []:
            if not isinstance(receiver, str):
                continue

            is_public = ap.is_public(receiver)
            if is_public:
                receivers[PUBLIC_UID] = ReceptionType.GLOBAL

                if fetch_unlisted and element == "as:cc":
                    receivers[_UNLISTED_UID] = ReceptionType.GLOBAL

            if actor and (
                (followers and receiver == followers) or (is_public and not is_group)
            ):
                await _add_followers(
                    services, actor, tags, receivers, follower_type, is_group
                )
                continue

            account = await services.graph.get_account_by_url(receiver)
            if not account:
                continue

            # Only explicit "to" addressing and replies may skip the follow check,
            # community accounts only accept posts from their contacts
            if (element != "as:to" and not reply_to) or account.is_community:
                rels = [Rel.SHARING, Rel.FRIEND]
                if account.is_community:
                    rels.append(Rel.FOLLOWER)

                if not actor or not await _is_following(
                    services, account.uid, actor, rels
                ):
                    continue

            if receivers.get(account.uid, ReceptionType.UNKNOWN) in (
                WEAK_RECEPTION_TYPES
            ):
                receivers[account.uid] = list_type

    unlisted = receivers.pop(_UNLISTED_UID, None) is not None

    if actor and upgrade_contacts:
        await _emit_contact_upgrades(services, receivers, actor)

    return Audience(receivers=receivers, unlisted=unlisted)


def get_receiver_urls(activity: ap.RawObject) -> ReceiverURLs:
    urls: ReceiverURLs = {}
    for element in AUDIENCE_ELEMENTS:
        for receiver in jsonld.fetch_element_array(activity, element, "@id") or []:
            if not isinstance(receiver, str):
                continue

            if ap.is_public(receiver):
                receiver = ap.AS_PUBLIC
            urls.setdefault(element, []).append(receiver)

    return urls


async def apply_personal_delivery(
    services: Services,
    receivers: ReceiverMap,
    urls: ReceiverURLs,
    uid: int,
    thread_completion: bool = False,
) -> tuple[ReceiverMap, ReceiverURLs]:
    """Makes sure a delivery to a personal inbox is kept for its owner."""
    receivers = dict(receivers)
    urls = {element: list(element_urls) for element, element_urls in urls.items()}

    if thread_completion:
        receivers.setdefault(uid, ReceptionType.UNKNOWN)
        return receivers, urls

    if receivers.get(uid, ReceptionType.UNKNOWN) in WEAK_RECEPTION_TYPES:
        receivers[uid] = ReceptionType.BCC
        owner = await services.graph.get_account(uid)
        if owner and owner.url:
            urls.setdefault("as:bcc", []).append(owner.url)

    return receivers, urls


def get_first_user_from_receivers(receivers: dict[int, Any]) -> int:
    for uid in receivers:
        if uid > 0:
            return uid
    return 0


async def get_best_user_for_activity(
    services: Services,
    activity: ap.RawObject,
) -> int:
    """Picks the local account most likely allowed to fetch the content."""
    actor = jsonld.fetch_element(activity, "as:actor", "@id")
    audience = await get_receivers(
        services,
        activity,
        actor,
        upgrade_contacts=False,
    )

    uid = 0
    for receiver_uid, reception_type in audience.receivers.items():
        if reception_type == ReceptionType.GLOBAL:
            return 0
        if not uid or reception_type == ReceptionType.TO:
            uid = receiver_uid

    if not uid and actor:
        for contact in await services.graph.get_contacts_for_actor(actor):
            if contact.rel in [Rel.SHARING, Rel.FRIEND]:
                return contact.uid

    return uid
