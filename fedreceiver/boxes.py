"""Actions related to the inbox: intake of deliveries and dispatching of the
normalized activities to the local handlers."""
import json
from typing import Mapping

from loguru import logger

from fedreceiver import activitypub as ap
from fedreceiver import httpsig
from fedreceiver import jsonld
from fedreceiver import trust as trust_evaluator
from fedreceiver.ap_object import ObjectData
from fedreceiver.ap_object import process_object
from fedreceiver.dispatch import Action
from fedreceiver.dispatch import Bucket
from fedreceiver.dispatch import Route
from fedreceiver.dispatch import resolve_route
from fedreceiver.graph import Rel
from fedreceiver.handlers import Completion
from fedreceiver.handlers import PostReason
from fedreceiver.handlers import Verb
from fedreceiver.normalizer import INTERNAL_FLAGS
from fedreceiver.normalizer import prepare_object_data
from fedreceiver.recorder import store_unhandled_activity
from fedreceiver.services import Services
from fedreceiver.trust import TrustContext


async def process_inbox(
    services: Services,
    body: bytes,
    headers: Mapping[str, str],
    uid: int = 0,
    method: str = "POST",
    path: str = "/inbox",
) -> None:
    try:
        raw_activity = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.info("Invalid body, discarding the delivery")
        return

    if not isinstance(raw_activity, dict):
        logger.info(f"Unexpected payload {raw_activity}")
        return

    activity = jsonld.compact(raw_activity)
    if not activity:
        logger.info("Invalid JSON-LD payload, discarding the delivery")
        return

    actor_id = jsonld.fetch_element(activity, "as:actor", "@id")
    if not actor_id:
        logger.info(f"Empty actor in {raw_activity.get('id')}")
        return

    httpsig_info = await httpsig.verify_signature(method, path, headers, body)
    trust = await trust_evaluator.evaluate(raw_activity, activity, httpsig_info)
    if trust is None:
        return

    actor = await services.identities.get_actor_by_url(actor_id)
    if actor:
        # Relays only announce public content, which is fetched from its origin
        if actor.is_relay:
            await process_relay_post(services, activity, actor_id)
            return

        await services.identities.mark_active(actor)

    await process_activity(
        services,
        activity,
        body.decode(errors="replace"),
        uid,
        trust,
        push=True,
    )


async def process_relay_post(
    services: Services,
    activity: ap.RawObject,
    actor: str,
) -> None:
    activity_type = jsonld.fetch_type(activity)
    if not activity_type:
        logger.info("Empty type")
        return

    if activity_type != "as:Announce":
        logger.info(f"Relay sent a {activity_type} instead of an announce")
        return

    object_id = jsonld.fetch_element(activity, "as:object", "@id")
    if not object_id or not isinstance(object_id, str):
        logger.info("No object id found")
        return

    contact = await services.graph.get_contact(0, actor)
    if not contact:
        logger.info(f"Relay contact {actor} not found")
        return

    if contact.rel not in [Rel.SHARING, Rel.FRIEND]:
        logger.warning(f"Relay {actor} is not a sharer")
        return

    logger.info(f"Got relayed message {object_id}")
    if known_uri := await services.graph.get_uri_by_link(object_id):
        logger.info(f"Relayed message {object_id} already exists: {known_uri}")
        return

    fetched_id = await services.handlers.fetch_missing_activity(
        object_id, actor, Completion.RELAY
    )
    if not fetched_id:
        logger.warning(f"Relayed message {object_id} had not been fetched")
        return

    if known_uri := await services.graph.get_uri_by_link(object_id):
        logger.info(f"Relayed message {object_id} has been stored: {known_uri}")
    else:
        logger.warning(f"Relayed message {object_id} had not been stored")


async def _announce_item(
    services: Services,
    object_data: ObjectData,
    activity: ap.RawObject,
    actor: str,
    body: str,
    push: bool,
) -> None:
    contact = await services.graph.get_contact(0, actor)
    object_data.thread_completion = contact.id if contact else None
    object_data.completion_mode = Completion.ANNOUNCE

    item = await services.handlers.create_item(object_data)
    if not item:
        logger.info(f"No item created for the announce of {object_data.object_id}")
        return

    await services.handlers.post_item(object_data, item, PostReason.ANNOUNCEMENT)

    # The announce itself is stored as an activity on the announced item
    announce_data = await process_object(services, activity) or ObjectData()
    announce_data.name = jsonld.fetch_type(activity)
    announce_data.author = actor
    announce_data.object_id = object_data.object_id
    announce_data.object_type = object_data.object_type
    announce_data.push = push
    if body:
        announce_data.raw = body

    await services.handlers.create_activity(announce_data, Verb.ANNOUNCE)


async def _run_route(
    services: Services,
    route: Route,
    object_data: ObjectData,
    activity: ap.RawObject,
    actor: str,
    body: str,
    push: bool,
) -> None:
    handlers = services.handlers
    if route.action == Action.IGNORE:
        logger.info(
            f"Ignoring {object_data.type} of {object_data.object_type!r} "
            f"{object_data.object_id}"
        )
    elif route.action == Action.CREATE_ITEM:
        if item := await handlers.create_item(object_data):
            await handlers.post_item(object_data, item)
        else:
            logger.info(f"No item created for {object_data.id}")
    elif route.action == Action.ANNOUNCE_ITEM:
        await _announce_item(services, object_data, activity, actor, body, push)
    elif route.action == Action.CREATE_ACTIVITY:
        if not route.verb:
            raise ValueError(f"Missing verb for {route}")

        # Following a post means subscribing to its thread
        if route.verb == Verb.FOLLOW:
            object_data.reply_to_id = object_data.object_id

        await handlers.create_activity(object_data, route.verb)
    else:
        await getattr(handlers, route.action.value)(object_data)


async def process_activity(
    services: Services,
    activity: ap.RawObject,
    body: str = "",
    uid: int = 0,
    trust: TrustContext = TrustContext(),
    push: bool = False,
) -> None:
    """Processes a compacted activity with an already evaluated trust.

    Also used for activities synthesized locally (fetched threads, relayed
    content), which carry the internal completion flags.
    """
    activity_type = jsonld.fetch_type(activity)
    if not activity_type:
        logger.info(f"Empty type in {activity.get('@id')}")
        return

    if not jsonld.fetch_element(activity, "as:object", "@id"):
        logger.info(f"Empty object in {activity.get('@id')}")
        return

    actor = jsonld.fetch_element(activity, "as:actor", "@id")
    if not actor:
        logger.info(f"Empty actor in {activity.get('@id')}")
        return

    attributed_to = None
    if isinstance(activity.get("as:object"), dict):
        attributed_to = jsonld.fetch_element(
            activity["as:object"], "as:attributedTo", "@id"
        )

    trust = trust_evaluator.check_signers(trust, actor, attributed_to)

    services = services.for_delivery()
    object_data, trust = await prepare_object_data(
        services, activity, uid, push, trust
    )
    if not object_data:
        logger.info(f"No object data found for {activity.get('@id')}")
        return

    # Lemmy announces activities, they are processed as regular activities
    if (
        activity_type == "as:Announce"
        and object_data.type in ap.ANNOUNCEABLE_ACTIVITY_TYPES
    ):
        activity_type = object_data.type

    if not trust.trusted:
        logger.info(
            f"Activity trust could not be achieved: {object_data.object_id=} "
            f"{activity_type=} signers={trust.signers} {actor=} {attributed_to=}"
        )
        return

    if body and not object_data.raw:
        object_data.raw = body

    for flag in INTERNAL_FLAGS:
        if activity.get(flag):
            setattr(object_data, flag, activity[flag])

    # Polls are still experimental, a sample of each one is kept
    if "as:Question" in [object_data.object_type, object_data.object_object_type]:
        store_unhandled_activity(
            Bucket.UNHANDLED,
            activity_type,
            object_data,
            activity,
            body,
            uid,
            trust,
            push,
        )

    route = resolve_route(
        activity_type, object_data.object_type, object_data.object_object_type
    )
    if isinstance(route, Bucket):
        logger.info(
            f"{route.value.capitalize()} activity: {activity_type} "
            f"{object_data.object_type} {object_data.object_object_type}"
        )
        store_unhandled_activity(
            route, activity_type, object_data, activity, body, uid, trust, push
        )
        return

    await _run_route(services, route, object_data, activity, actor, body, push)
