"""Turns the different activity shapes used across the fediverse into a single
`ObjectData` record."""
import json
from typing import Any

from loguru import logger

from fedreceiver import activitypub as ap
from fedreceiver import jsonld
from fedreceiver.ap_object import ObjectData
from fedreceiver.ap_object import process_object
from fedreceiver.audience import AUDIENCE_ELEMENTS
from fedreceiver.audience import apply_personal_delivery
from fedreceiver.audience import get_best_user_for_activity
from fedreceiver.audience import get_receiver_urls
from fedreceiver.audience import get_receivers
from fedreceiver.services import Services
from fedreceiver.trust import TrustContext
from fedreceiver.utils.url import get_hostname

# Announces of announces are not followed further than this
_MAX_ANNOUNCE_HOPS = 1

# Flags set on internally synthesized activities (thread completion, relays)
INTERNAL_FLAGS = [
    "thread_completion",
    "completion_mode",
    "thread_children_type",
    "from_relay",
]

_CONTENT_ACTIVITY_TYPES = ["as:Create", "as:Update", "as:Announce", "as:Invite"]
_STUB_ACTIVITY_TYPES = ap.ACTIVITY_TYPES + [
    "as:Follow",
    "litepub:EmojiReact",
    "as:View",
]


def _with_internal_flags(
    activity: ap.RawObject,
    previous_activity: ap.RawObject,
) -> ap.RawObject:
    for flag in INTERNAL_FLAGS:
        if flag in previous_activity:
            activity[flag] = previous_activity[flag]
    return activity


def _unique(values: list[str]) -> list[str]:
    return list(dict.fromkeys(values))


async def fetch_object_type(
    services: Services,
    activity: ap.RawObject,
    object_id: str,
    uid: int = 0,
) -> str | None:
    """Cheap type lookup, the network is only used as a last resort."""
    if activity.get("as:object"):
        if object_type := jsonld.fetch_type(activity["as:object"]):
            return object_type

    # The exact type doesn't matter for the further processing
    if await services.graph.post_exists(object_id):
        return "as:Note"

    if account := await services.graph.get_account_by_url(object_id):
        return "as:Group" if account.is_community else "as:Person"

    if profile := await services.identities.get_actor_by_url(
        object_id, only_cached=True
    ):
        await services.identities.mark_active(profile)
        return "as:" + profile.ap_type

    if data := await services.fetcher.fetch(object_id, uid):
        if object_type := jsonld.fetch_type(jsonld.compact(data)):
            return object_type

    return None


def _unhandled(object_id: str, object_type: str) -> ObjectData:
    return ObjectData(id=object_id, object_type=object_type)


async def fetch_object(
    services: Services,
    object_id: str,
    obj: Any = None,
    trusted: bool = False,
    uid: int = 0,
) -> ObjectData | None:
    """Returns the normalized content at `object_id`.

    The embedded `obj` is only used if the delivery is trusted. Unknown object
    types and announce chains longer than `_MAX_ANNOUNCE_HOPS` result in a
    record only carrying the id and the type.
    """
    hops = 0
    while True:
        raw_object: ap.RawObject | None = None
        if not trusted or not jsonld.fetch_type(obj):
            raw_object = await services.fetcher.fetch(object_id, uid)
            if raw_object:
                obj = jsonld.compact(raw_object)
                logger.info(f"Fetched content for {object_id}")
            else:
                logger.info(f"Empty content for {object_id}, looking for a local copy")
                stored_object = await services.graph.get_stored_object(object_id)
                if not stored_object:
                    logger.info(f"{object_id} was not found locally")
                    return None

                logger.info(f"Using the stored copy of {object_id}")
                obj = jsonld.compact(stored_object)

            fetched_id = jsonld.fetch_element(obj, "@id")
            if not fetched_id:
                logger.info("Empty id")
                return None

            if fetched_id != object_id:
                logger.info(f"Fetched id {fetched_id} differs from {object_id}")
                return None
        else:
            logger.info(f"Using the original object for {object_id}")

        object_type = jsonld.fetch_type(obj)
        if not object_type:
            logger.info("Empty type")
            return None

        # Lemmy reshares "Create" activities instead of the content
        if object_type == "as:Create":
            obj = ap.as_list(obj.get("as:object"))[0]
            object_type = jsonld.fetch_type(obj)
            if not object_type:
                logger.info("Empty type")
                return None

        if object_type in ap.CONTENT_TYPES or object_type in ap.IGNORABLE_TYPES:
            object_data = await process_object(services, obj)
            if object_data and raw_object:
                object_data.raw = json.dumps(raw_object)
            return object_data

        if object_type == "as:Announce":
            announced_id = jsonld.fetch_element(obj, "as:object", "@id")
            if not announced_id or not isinstance(announced_id, str):
                return None

            if hops >= _MAX_ANNOUNCE_HOPS:
                logger.info(f"Too many nested announces at {object_id}")
                return _unhandled(object_id, object_type)

            hops += 1
            object_id = announced_id
            obj = None
            trusted = False
            continue

        logger.info(f"Unhandled object type: {object_type}")
        return _unhandled(object_id, object_type)


async def add_activity_fields(
    services: Services,
    object_data: ObjectData,
    activity: ap.RawObject,
) -> ObjectData:
    if not object_data.published:
        published = jsonld.fetch_element(activity, "as:published", "@value")
        if isinstance(published, str):
            object_data.published = published

    if not object_data.guid:
        guid = jsonld.fetch_element(activity, "diaspora:guid", "@value")
        if isinstance(guid, str):
            object_data.guid = guid

    service = jsonld.value_of(
        jsonld.fetch_element(
            activity, "as:instrument", "as:name", "@type", "as:Service"
        )
    )
    object_data.service = service if isinstance(service, str) else None

    if object_data.object_id:
        # Some servers (GNU Social) refer to the permalink instead of the URI
        object_id = await services.graph.get_uri_by_link(object_data.object_id)
        if object_id and object_id != object_data.object_id:
            logger.info(f"Fix wrong object id {object_data.object_id} -> {object_id}")
            object_data.object_id = object_id

    return object_data


def _stub_object_data(activity: ap.RawObject, push: bool) -> ObjectData:
    nested_object = activity.get("as:object")
    object_object = jsonld.fetch_element(nested_object, "as:object")
    return ObjectData(
        id=jsonld.fetch_element(activity, "@id"),
        object_id=jsonld.fetch_element(activity, "as:object", "@id"),
        object_actor=jsonld.fetch_element(nested_object, "as:actor", "@id"),
        object_object=object_object if isinstance(object_object, str) else None,
        object_type=jsonld.fetch_type(nested_object),
        push=push,
    )


async def prepare_object_data(
    services: Services,
    activity: ap.RawObject,
    uid: int,
    push: bool,
    trust: TrustContext,
) -> tuple[ObjectData | None, TrustContext]:
    activity_id = jsonld.fetch_element(activity, "@id")
    if activity_id and not trust.trusted:
        fetch_uid = uid or await get_best_user_for_activity(services, activity)
        if fetched_activity := await services.fetcher.fetch(activity_id, fetch_uid):
            compacted = jsonld.compact(fetched_activity)
            fetched_id = jsonld.fetch_element(compacted, "@id")
            if fetched_id == activity_id:
                logger.info(f"Activity {activity_id} fetched successfully")
                trust = trust.upgrade()
                activity = _with_internal_flags(compacted, activity)
            else:
                logger.info(f"Activity id {activity_id} differs from {fetched_id}")
        else:
            logger.info(f"Activity {activity_id} could not be fetched")

    # The trust can only decrease from here
    if not trust.trusted:
        logger.info(f"Activity {activity_id} is not trusted")
        return None, trust

    actor = jsonld.fetch_element(activity, "as:actor", "@id")
    if not actor:
        logger.info(f"Empty actor in {activity_id}")
        return None, trust

    activity_type = jsonld.fetch_type(activity) or ""

    audience = await get_receivers(services, activity, actor)
    receivers = audience.receivers
    urls = get_receiver_urls(activity)

    # A delivery to a personal inbox is always kept for its owner
    if uid:
        receivers, urls = await apply_personal_delivery(
            services,
            receivers,
            urls,
            uid,
            thread_completion=bool(activity.get("thread_completion")),
        )

    # Private content may require fetching as one of the receivers
    fetch_uid = uid or await get_best_user_for_activity(services, activity)

    object_id = jsonld.fetch_element(activity, "as:object", "@id")
    if not object_id:
        logger.info("No object found")
        return None, trust

    if not isinstance(object_id, str):
        logger.info(f"Invalid object id {object_id}")
        return None, trust

    object_type = await fetch_object_type(services, activity, object_id, fetch_uid)

    # Lemmy announces activities, the announced activity is processed instead
    if (
        activity_type == "as:Announce"
        and object_type in ap.ANNOUNCEABLE_ACTIVITY_TYPES
    ):
        if data := await services.fetcher.fetch(object_id, fetch_uid):
            activity_type = object_type
            activity = _with_internal_flags(jsonld.compact(data), activity)

            actor = jsonld.fetch_element(activity, "as:actor", "@id")
            object_id = jsonld.fetch_element(activity, "as:object", "@id")
            if not actor or not isinstance(object_id, str):
                logger.info(f"Invalid announced activity {object_id}")
                return None, trust

            object_type = await fetch_object_type(
                services, activity, object_id, fetch_uid
            )

    object_data: ObjectData | None
    if object_type in ap.ACCOUNT_TYPES:
        # Activities on accounts are never altered
        object_data = _stub_object_data(activity, push)
    elif activity_type in _CONTENT_ACTIVITY_TYPES or activity_type.endswith(
        "#emojiReaction"
    ):
        # The announced object is never trusted through the announcer signature
        object_data = await fetch_object(
            services,
            object_id,
            activity.get("as:object"),
            trust.trusted and activity_type != "as:Announce",
            fetch_uid,
        )
        if not object_data:
            logger.info(f"Object {object_id} couldn't be processed")
            return None, trust

        object_data.object_id = object_id
        object_data.push = False if activity_type == "as:Announce" else push

        if object_data.reply_to_id and await services.graph.private_thread_exists(
            object_data.reply_to_id
        ):
            object_data.directmessage = True
        else:
            object_data.directmessage = bool(
                jsonld.fetch_element(activity, "litepub:directMessage", "@value")
            )
    elif activity_type in _STUB_ACTIVITY_TYPES and object_type in ap.CONTENT_TYPES:
        # The object isn't fetched, its type is unknown at this point
        object_data = await process_object(services, activity) or ObjectData()
        object_data.name = activity_type
        object_data.author = actor
        object_data.object_id = object_id
        object_data.object_type = ""
        object_data.push = push
    elif activity_type in ["as:Add", "as:Remove"]:
        nested_object = activity.get("as:object")
        object_content = jsonld.fetch_element(nested_object, "as:content", "@value")
        object_data = ObjectData(
            id=jsonld.fetch_element(activity, "@id"),
            target_id=jsonld.fetch_element(activity, "as:target", "@id"),
            object_id=object_id,
            object_type=jsonld.fetch_type(nested_object),
            object_content=object_content if isinstance(object_content, str) else None,
            push=push,
        )
    else:
        object_data = _stub_object_data(activity, push)

        # An Undo targets the object of its object
        if activity_type == "as:Undo" and object_data.object_object:
            object_data.object_object_type = await fetch_object_type(
                services, {}, object_data.object_object, fetch_uid
            )

    object_data = await add_activity_fields(services, object_data, activity)

    if not object_data.object_type:
        object_data.object_type = object_type or ""

    receiver_urls = dict(object_data.receiver_urls)
    for element in AUDIENCE_ELEMENTS:
        if (
            not receiver_urls.get(element) or element in ["as:bto", "as:bcc"]
        ) and urls.get(element):
            receiver_urls[element] = _unique(
                receiver_urls.get(element, []) + urls[element]
            )
    object_data.receiver_urls = receiver_urls

    item_receiver = {receiver_uid: True for receiver_uid in receivers}
    object_data.type = activity_type
    object_data.actor = actor
    object_data.item_receiver = item_receiver
    object_data.receiver = {**object_data.receiver, **item_receiver}
    object_data.reception_type = {**object_data.reception_type, **receivers}

    # Cross host spoofing guard
    author = object_data.author or actor
    if author and object_data.id:
        author_host = get_hostname(author)
        id_host = get_hostname(object_data.id)
        if author_host == id_host:
            logger.info(f"Valid hosts for {activity_type}: {id_host}")
        else:
            logger.warning(
                f"Differing hosts on author {author_host} and id {id_host} "
                f"for {activity_type}"
            )
            trust = trust.downgrade()

    logger.info(
        f"Processing {object_data.type} {object_data.object_type} {object_data.id}"
    )
    return object_data, trust
