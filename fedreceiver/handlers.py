"""Local side effects triggered by incoming activities.

Every method receives the normalized `ObjectData` of the delivery and is
only called once the delivery is trusted.
"""
import enum
import typing
from typing import Any

if typing.TYPE_CHECKING:
    from fedreceiver.ap_object import ObjectData

Item = dict[str, Any]


class Verb(str, enum.Enum):
    LIKE = "like"
    DISLIKE = "dislike"
    ATTEND = "attend"
    ATTENDNO = "attendno"
    ATTENDMAYBE = "attendmaybe"
    FOLLOW = "follow"
    VIEW = "view"
    EMOJIREACT = "emojireact"
    ANNOUNCE = "announce"


class PostReason(enum.IntEnum):
    NONE = 0
    ANNOUNCEMENT = 1


class Completion(enum.IntEnum):
    NONE = 0
    ANNOUNCE = 1
    RELAY = 2
    MANUAL = 3
    AUTO = 4


class ActivityHandlers:
    async def create_item(self, object_data: "ObjectData") -> Item | None:
        raise NotImplementedError

    async def post_item(
        self,
        object_data: "ObjectData",
        item: Item,
        reason: PostReason = PostReason.NONE,
    ) -> None:
        raise NotImplementedError

    async def update_item(self, object_data: "ObjectData") -> None:
        raise NotImplementedError

    async def delete_item(self, object_data: "ObjectData") -> None:
        raise NotImplementedError

    async def create_activity(self, object_data: "ObjectData", verb: Verb) -> None:
        raise NotImplementedError

    async def undo_activity(self, object_data: "ObjectData") -> None:
        raise NotImplementedError

    async def update_person(self, object_data: "ObjectData") -> None:
        raise NotImplementedError

    async def delete_person(self, object_data: "ObjectData") -> None:
        raise NotImplementedError

    async def block_account(self, object_data: "ObjectData") -> None:
        raise NotImplementedError

    async def unblock_account(self, object_data: "ObjectData") -> None:
        raise NotImplementedError

    async def follow_user(self, object_data: "ObjectData") -> None:
        raise NotImplementedError

    async def accept_follow_user(self, object_data: "ObjectData") -> None:
        raise NotImplementedError

    async def reject_follow_user(self, object_data: "ObjectData") -> None:
        raise NotImplementedError

    async def undo_follow_user(self, object_data: "ObjectData") -> None:
        raise NotImplementedError

    async def add_tag(self, object_data: "ObjectData") -> None:
        raise NotImplementedError

    async def add_to_featured_collection(self, object_data: "ObjectData") -> None:
        raise NotImplementedError

    async def remove_from_featured_collection(
        self, object_data: "ObjectData"
    ) -> None:
        raise NotImplementedError

    async def fetch_missing_activity(
        self,
        url: str,
        relay_actor: str,
        completion: Completion,
    ) -> str | None:
        """Pulls and processes the activity at `url`, returns its id."""
        raise NotImplementedError

    async def upgrade_contact(self, contact_id: int, uid: int, url: str) -> None:
        """Moves a contact still using a legacy protocol to ActivityPub."""
        raise NotImplementedError
