"""Static routing table from (activity type, object type, nested object type)
to the local side effect."""
import enum
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

from fedreceiver import activitypub as ap
from fedreceiver.handlers import Verb


class Action(str, enum.Enum):
    # Values match the `ActivityHandlers` method names
    UPDATE_ITEM = "update_item"
    DELETE_ITEM = "delete_item"
    UNDO_ACTIVITY = "undo_activity"
    UPDATE_PERSON = "update_person"
    DELETE_PERSON = "delete_person"
    BLOCK_ACCOUNT = "block_account"
    UNBLOCK_ACCOUNT = "unblock_account"
    FOLLOW_USER = "follow_user"
    ACCEPT_FOLLOW_USER = "accept_follow_user"
    REJECT_FOLLOW_USER = "reject_follow_user"
    UNDO_FOLLOW_USER = "undo_follow_user"
    ADD_TAG = "add_tag"
    ADD_TO_FEATURED_COLLECTION = "add_to_featured_collection"
    REMOVE_FROM_FEATURED_COLLECTION = "remove_from_featured_collection"

    # Composite actions
    CREATE_ITEM = "create_item"
    ANNOUNCE_ITEM = "announce_item"
    CREATE_ACTIVITY = "create_activity"

    IGNORE = "ignore"


class Bucket(str, enum.Enum):
    UNHANDLED = "unhandled"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Route:
    action: Action
    verb: Verb | None = None


@dataclass(frozen=True)
class _Rule:
    object_types: frozenset[str]
    route: Route
    # `None` matches any nested object type
    object_object_types: frozenset[str] | None = None

    def matches(self, object_type: str, object_object_type: str) -> bool:
        if object_type not in self.object_types:
            return False

        return (
            self.object_object_types is None
            or object_object_type in self.object_object_types
        )


_CONTENT = frozenset(ap.CONTENT_TYPES)
_ACCOUNT = frozenset(ap.ACCOUNT_TYPES)
_IGNORABLE = frozenset(ap.IGNORABLE_TYPES)
_TOMBSTONE_OR_CONTENT = _CONTENT | {"as:Tombstone"}
_REACTIONS = frozenset(
    ap.ACTIVITY_TYPES + ["as:View", "litepub:EmojiReact", "as:Announce"]
)

_IGNORE = Route(Action.IGNORE)


def _reaction(verb: Verb) -> tuple[_Rule, ...]:
    return (_Rule(_CONTENT, Route(Action.CREATE_ACTIVITY, verb)),)


ROUTES: Mapping[str, tuple[_Rule, ...]] = MappingProxyType(
    {
        "as:Create": (
            _Rule(_CONTENT, Route(Action.CREATE_ITEM)),
            _Rule(_IGNORABLE, _IGNORE),
        ),
        "as:Invite": (_Rule(frozenset({"as:Event"}), Route(Action.CREATE_ITEM)),),
        "as:Add": (
            _Rule(frozenset({"as:tag"}), Route(Action.ADD_TAG)),
            _Rule(_CONTENT, Route(Action.ADD_TO_FEATURED_COLLECTION)),
        ),
        "as:Announce": (_Rule(_CONTENT, Route(Action.ANNOUNCE_ITEM)),),
        "as:Like": _reaction(Verb.LIKE),
        "as:Dislike": _reaction(Verb.DISLIKE),
        "as:TentativeAccept": _reaction(Verb.ATTENDMAYBE),
        "as:View": _reaction(Verb.VIEW),
        "litepub:EmojiReact": _reaction(Verb.EMOJIREACT),
        "as:Update": (
            _Rule(_CONTENT, Route(Action.UPDATE_ITEM)),
            _Rule(_ACCOUNT, Route(Action.UPDATE_PERSON)),
            _Rule(_IGNORABLE, _IGNORE),
        ),
        "as:Delete": (
            _Rule(_TOMBSTONE_OR_CONTENT, Route(Action.DELETE_ITEM)),
            _Rule(_ACCOUNT, Route(Action.DELETE_PERSON)),
        ),
        "as:Block": (_Rule(_ACCOUNT, Route(Action.BLOCK_ACCOUNT)),),
        "as:Remove": (_Rule(_CONTENT, Route(Action.REMOVE_FROM_FEATURED_COLLECTION)),),
        "as:Follow": (
            _Rule(_ACCOUNT, Route(Action.FOLLOW_USER)),
            _Rule(_CONTENT, Route(Action.CREATE_ACTIVITY, Verb.FOLLOW)),
        ),
        "as:Accept": (
            _Rule(frozenset({"as:Follow"}), Route(Action.ACCEPT_FOLLOW_USER)),
            _Rule(_CONTENT, Route(Action.CREATE_ACTIVITY, Verb.ATTEND)),
        ),
        "as:Reject": (
            _Rule(frozenset({"as:Follow"}), Route(Action.REJECT_FOLLOW_USER)),
            _Rule(_CONTENT, Route(Action.CREATE_ACTIVITY, Verb.ATTENDNO)),
        ),
        "as:Undo": (
            _Rule(frozenset({"as:Follow"}), Route(Action.UNDO_FOLLOW_USER), _ACCOUNT),
            _Rule(frozenset({"as:Follow"}), Route(Action.UNDO_ACTIVITY), _CONTENT),
            _Rule(
                frozenset({"as:Accept"}), Route(Action.REJECT_FOLLOW_USER), _ACCOUNT
            ),
            _Rule(frozenset({"as:Block"}), Route(Action.UNBLOCK_ACCOUNT), _ACCOUNT),
            _Rule(_REACTIONS, Route(Action.UNDO_ACTIVITY), _TOMBSTONE_OR_CONTENT),
            # The target of the undone activity can't be determined
            _Rule(_REACTIONS | {"as:Create"}, _IGNORE, frozenset({""})),
            _Rule(frozenset({"as:Create"}), _IGNORE, _IGNORABLE),
        ),
    }
)


def resolve_route(
    activity_type: str,
    object_type: str | None,
    object_object_type: str | None = None,
) -> Route | Bucket:
    if activity_type not in ROUTES:
        return Bucket.UNKNOWN

    object_type = object_type or ""
    # Never guess what to do with an undetermined object
    if object_type == "":
        return _IGNORE

    for rule in ROUTES[activity_type]:
        if rule.matches(object_type, object_object_type or ""):
            return rule.route

    return Bucket.UNHANDLED
