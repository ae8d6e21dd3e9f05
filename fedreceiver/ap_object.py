"""Canonical record built out of a compacted object, and the processing of its
nested content (attachments, tags, emojis, polls, ...)."""
import itertools
from typing import Any

import pydantic
from bs4 import BeautifulSoup  # type: ignore
from loguru import logger
from markdown import markdown  # type: ignore

from fedreceiver import activitypub as ap
from fedreceiver import jsonld
from fedreceiver.audience import ReceptionType
from fedreceiver.audience import get_receiver_urls
from fedreceiver.audience import get_receivers
from fedreceiver.handlers import Completion
from fedreceiver.services import Services
from fedreceiver.utils.url import compare_link
from fedreceiver.utils.url import is_valid_http_url

_TORRENT_MEDIA_TYPES = [
    "application/x-bittorrent",
    "application/x-bittorrent;x-scheme-handler/magnet",
]

# Ideal width for a full screen preview
_PREVIEW_WIDTH = 632


def _to_camel(string: str) -> str:
    cased = "".join(word.capitalize() for word in string.split("_"))
    return cased[0:1].lower() + cased[1:]


class BaseModel(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(
        alias_generator=_to_camel,
        populate_by_name=True,
    )


class Attachment(BaseModel):
    type: str | None = None
    media_type: str | None = None
    name: str | None = None
    url: str | None = None

    # Link previews
    title: str | None = None
    desc: str | None = None
    image: str | None = None

    height: int | None = None
    width: int | None = None
    size: int | None = None


class Tag(BaseModel):
    type: str
    href: str | None = None
    name: str | None = None


class Emoji(BaseModel):
    name: str | None = None
    href: str | None = None


class QuestionOption(BaseModel):
    name: str | None = None
    replies: int = 0


class Question(BaseModel):
    multiple: bool
    end_time: str | None = None
    voters: int = 0
    options: list[QuestionOption] = []


class ObjectData(BaseModel):
    """Normalized activity/object, `None` meaning absent."""

    id: str | None = None
    type: str | None = None

    object_id: str | None = None
    object_type: str | None = None
    object_actor: str | None = None
    object_object: str | None = None
    object_object_type: str | None = None
    object_content: str | None = None
    target_id: str | None = None

    actor: str | None = None
    author: str | None = None
    reply_to_id: str | None = None

    published: str | None = None
    updated: str | None = None

    context: str | None = None
    conversation: str | None = None
    sensitive: bool | None = None
    name: str | None = None
    summary: str | None = None
    content: str | None = None
    mediatype: str | None = None
    source: str | None = None
    source_mediatype: str | None = None

    start_time: str | None = None
    end_time: str | None = None
    location: str | None = None
    latitude: float | str | None = None
    longitude: float | str | None = None

    attachments: list[Attachment] = []
    tags: list[Tag] = []
    emojis: list[Emoji] = []
    languages: dict[str, str] = {}
    question: Question | None = None

    generator: str | None = None
    alternate_url: str | None = None
    service: str | None = None
    guid: str | None = None
    identifier: str | None = None
    diaspora_comment: str | None = None
    diaspora_like: str | None = None

    receiver_urls: dict[str, list[str]] = {}
    receiver: dict[int, bool] = {}
    item_receiver: dict[int, bool] = {}
    reception_type: dict[int, ReceptionType] = {}
    unlisted: bool = False
    directmessage: bool = False
    push: bool = False
    raw: str | None = None

    # Routing flags for thread completion and relayed content
    thread_completion: int | None = None
    completion_mode: Completion | None = None
    thread_children_type: str | None = None
    from_relay: bool = False


def _value(doc: Any, element: str) -> Any:
    return jsonld.fetch_element(doc, element, "@value")


def _str_value(doc: Any, element: str) -> str | None:
    value = _value(doc, element)
    if isinstance(value, str):
        return value
    return None


def _bool_value(doc: Any, element: str) -> bool | None:
    value = _value(doc, element)
    if isinstance(value, bool):
        return value
    return None


def _as_str(value: Any) -> str | None:
    if isinstance(value, str):
        return value
    return None


def _as_coordinate(value: Any) -> float | str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float, str)):
        return value
    return None


def _as_int(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _type_name(doc: Any) -> str | None:
    if ap_type := jsonld.fetch_type(doc):
        return ap_type.removeprefix("as:")
    return None


def process_languages(languages: list[Any]) -> dict[str, str]:
    """Converts the PeerTube `inLanguage` element."""
    language_list = {}
    for language in languages:
        if not isinstance(language, dict):
            continue

        identifier = jsonld.value_of(
            language.get("sc:identifier") or language.get("_:identifier")
        )
        name = _str_value(language, "as:name")
        if identifier and name:
            language_list[identifier] = name

    return language_list


def process_tags(tags: list[Any]) -> list[Tag]:
    tag_list = []
    for tag in tags:
        if not isinstance(tag, dict) or not (tag_type := _type_name(tag)):
            continue

        name = _str_value(tag, "as:name")
        href = jsonld.fetch_element(tag, "as:href", "@id")
        tag_list.append(Tag(type=tag_type, href=href or name, name=name))

    return tag_list


def process_emojis(emojis: list[Any]) -> list[Emoji]:
    emoji_list = []
    for emoji in emojis:
        if jsonld.fetch_type(emoji) != "toot:Emoji" or not emoji.get("as:icon"):
            continue

        emoji_list.append(
            Emoji(
                name=_str_value(emoji, "as:name"),
                href=jsonld.fetch_element(
                    ap.as_list(emoji["as:icon"])[0], "as:url", "@id"
                ),
            )
        )

    return emoji_list


def _process_page_attachment(attachment: ap.RawObject) -> Attachment:
    page_url = None
    page_image = None
    for url in jsonld.fetch_element_array(attachment, "as:url") or []:
        if isinstance(url, str):
            page_url = url
            continue

        href = jsonld.fetch_element(url, "as:href", "@id") or url.get("@id")
        media_type = _str_value(url, "as:mediaType")
        if media_type and media_type.startswith("image"):
            page_image = href
        else:
            page_url = href

    return Attachment(
        type="link",
        title=_str_value(attachment, "as:name"),
        desc=_str_value(attachment, "as:summary"),
        url=page_url,
        image=page_image,
    )


def _process_image_attachment(attachment: ap.RawObject) -> Attachment:
    media_type = _str_value(attachment, "as:mediaType")
    full_url = jsonld.fetch_element(attachment, "as:url", "@id")
    preview_url = None

    # Several variants of the same image
    if not full_url and (urls := jsonld.fetch_element_array(attachment, "as:url")):
        variants: dict[int, str] = {}
        previews: dict[int, str] = {}
        for url in urls:
            # No discrimination possible
            if isinstance(url, str):
                full_url = url
                continue

            if media_type != _str_value(url, "as:mediaType"):
                continue

            href = jsonld.fetch_element(url, "as:href", "@id")
            full_url = href or full_url

            width = _as_int(_value(url, "as:width"))
            if width is None:
                width = 1

            if href and width:
                variants[width] = href
                previews[abs(_PREVIEW_WIDTH - width)] = href

        if variants:
            full_url = variants[max(variants)]
            preview_url = previews[min(previews)]

    return Attachment(
        type=_type_name(attachment),
        media_type=media_type,
        name=_str_value(attachment, "as:name"),
        url=full_url,
        image=preview_url if preview_url != full_url else None,
    )


def process_attachments(attachments: list[Any]) -> list[Attachment]:
    attachment_list = []
    for attachment in attachments:
        if not attachment or not isinstance(attachment, dict):
            continue

        attachment_type = jsonld.fetch_type(attachment)
        if attachment_type == "as:Page":
            attachment_list.append(_process_page_attachment(attachment))
        elif attachment_type == "as:Image":
            attachment_list.append(_process_image_attachment(attachment))
        else:
            attachment_list.append(
                Attachment(
                    type=_type_name(attachment),
                    media_type=_str_value(attachment, "as:mediaType"),
                    name=_str_value(attachment, "as:name"),
                    url=jsonld.fetch_element(attachment, "as:url", "@id"),
                    height=_as_int(_value(attachment, "as:height")),
                    width=_as_int(_value(attachment, "as:width")),
                    image=jsonld.fetch_element(attachment, "as:image", "@id"),
                )
            )

    return attachment_list


def process_question(obj: ap.RawObject) -> Question | None:
    if obj.get("as:oneOf"):
        multiple = False
        options = jsonld.fetch_element_array(obj, "as:oneOf") or []
    elif obj.get("as:anyOf"):
        multiple = True
        options = jsonld.fetch_element_array(obj, "as:anyOf") or []
    else:
        return None

    closed = _value(obj, "as:closed")
    end_time = closed if isinstance(closed, str) else _str_value(obj, "as:endTime")

    question = Question(
        multiple=multiple,
        end_time=end_time,
        voters=_as_int(_value(obj, "toot:votersCount")) or 0,
    )

    voters = 0
    for option in options:
        if jsonld.fetch_type(option) != "as:Note" or not option.get("as:replies"):
            continue

        replies = _as_int(_value(option["as:replies"], "as:totalItems")) or 0
        question.options.append(
            QuestionOption(name=_str_value(option, "as:name"), replies=replies)
        )
        voters += replies

    # Single choice polls don't always provide the voters count (Misskey)
    if not question.voters and not question.multiple:
        question.voters = voters

    return question


def _source_content(obj: ap.RawObject, media_type: str) -> str | None:
    source = jsonld.fetch_element(
        obj, "as:source", "as:content", "as:mediaType", media_type
    )
    source = jsonld.value_of(source)
    if isinstance(source, str) and source:
        return source
    return None


def get_source(obj: ap.RawObject) -> tuple[str | None, str | None]:
    """Returns the original source of the content and its media type."""
    if source := _source_content(obj, "text/bbcode"):
        return source, "text/bbcode"

    if source := _source_content(obj, "text/markdown"):
        return markdown(source), "text/html"

    if source := _source_content(obj, "text/html"):
        return source, "text/html"

    return None, None


def _to_plaintext(text: str) -> str:
    html = markdown(text)
    return BeautifulSoup(html, "html5lib").get_text(" ", strip=True)


def extract_alternate_url(urls: list[Any]) -> str | None:
    alternate_url = None
    for url in urls:
        if not isinstance(url, dict) or jsonld.fetch_type(url) != "as:Link":
            continue

        href = jsonld.fetch_element(url, "as:href", "@id")
        if href and _str_value(url, "as:mediaType") == "text/html":
            alternate_url = href

    return alternate_url


def process_attachment_urls(urls: list[Any]) -> list[Attachment]:
    """Audio and video posts list their media files as links."""
    found: dict[int | str, Attachment] = {}
    counter = itertools.count()
    for url in urls:
        if not isinstance(url, dict) or jsonld.fetch_type(url) != "as:Link":
            continue

        href = jsonld.fetch_element(url, "as:href", "@id")
        media_type = _str_value(url, "as:mediaType")
        if not href or not media_type:
            continue

        filetype = media_type.split("/")[0].lower()
        if filetype == "audio":
            found[next(counter)] = Attachment(
                type=filetype, media_type=media_type, url=href, name=""
            )
        elif filetype == "video":
            height = _as_int(_value(url, "as:height")) or 0
            # PeerTube audio-only track
            if not height:
                continue

            found[next(counter)] = Attachment(
                type=filetype,
                media_type=media_type,
                url=href,
                height=height,
                size=_as_int(_value(url, "pt:size")) or 0,
                name="",
            )
        elif media_type in _TORRENT_MEDIA_TYPES:
            height = _as_int(_value(url, "as:height")) or 0

            # Only the highest resolution is kept
            if (existing := found.get(media_type)) and height < (existing.height or 0):
                continue

            found[media_type] = Attachment(
                type=media_type,
                media_type=media_type,
                url=href,
                height=height,
                name="",
            )
        elif media_type == "application/x-mpegURL":
            # PeerTube lists the actual video links in the tags of the playlist
            for attachment in process_attachment_urls(ap.as_list(url.get("as:tag"))):
                found[next(counter)] = attachment

    return list(found.values())


def _alternate_url(obj: ap.RawObject) -> str | None:
    alternate_url = jsonld.fetch_element(obj, "as:url", "@id")

    # Hubzilla uses lists of links
    if not isinstance(alternate_url, str):
        alternate_url = jsonld.value_of(jsonld.fetch_element(obj, "as:url", "as:href"))

    if isinstance(alternate_url, str) and is_valid_http_url(alternate_url):
        return alternate_url

    return None


async def _reply_to_id(
    services: Services,
    obj: ap.RawObject,
    object_id: str,
    object_type: str | None,
) -> str:
    reply_to_id = _as_str(jsonld.fetch_element(obj, "as:inReplyTo", "@id"))

    # An empty "id" is compacted to "./"
    if not reply_to_id or reply_to_id == "./":
        # Activities reply to the object they refer to
        if object_type in ap.ACTIVITY_TYPES and (
            activity_object_id := _as_str(jsonld.fetch_element(obj, "as:object", "@id"))
        ):
            return activity_object_id
        return object_id

    # Some servers (GNU Social) reply to the permalink instead of the URI
    fixed_reply_to_id = await services.graph.get_uri_by_link(reply_to_id)
    if fixed_reply_to_id and fixed_reply_to_id != reply_to_id:
        logger.info(f"Fix wrong reply-to {reply_to_id} -> {fixed_reply_to_id}")
        return fixed_reply_to_id

    return reply_to_id


async def process_object(
    services: Services,
    obj: ap.RawObject,
) -> ObjectData | None:
    object_id = jsonld.fetch_element(obj, "@id")
    if not object_id or not isinstance(object_id, str):
        return None

    object_type = jsonld.fetch_type(obj)

    published = _str_value(obj, "as:published")
    updated = _str_value(obj, "as:updated") or published
    published = published or updated

    actor = _as_str(jsonld.fetch_element(obj, "as:attributedTo", "@id"))
    if not actor:
        actor = _as_str(jsonld.fetch_element(obj, "as:actor", "@id"))

    location = jsonld.value_of(
        jsonld.fetch_element(obj, "as:location", "as:name", "@type", "as:Place")
    )
    if isinstance(location, str) and location:
        # Some servers allow formatted text in the location
        location = _to_plaintext(location)
    else:
        location = None

    source, source_mediatype = get_source(obj)

    object_data = ObjectData(
        id=object_id,
        object_type=object_type,
        reply_to_id=await _reply_to_id(services, obj, object_id, object_type),
        published=published,
        updated=updated,
        actor=actor,
        author=actor,
        identifier=_str_value(obj, "sc:identifier"),
        guid=_str_value(obj, "diaspora:guid"),
        diaspora_comment=_str_value(obj, "diaspora:comment"),
        diaspora_like=_str_value(obj, "diaspora:like"),
        context=_as_str(jsonld.fetch_element(obj, "as:context", "@id")),
        conversation=_as_str(
            jsonld.fetch_element(obj, "ostatus:conversation", "@id")
        ),
        sensitive=_bool_value(obj, "as:sensitive"),
        name=_str_value(obj, "as:name"),
        summary=_str_value(obj, "as:summary"),
        content=_str_value(obj, "as:content"),
        mediatype=_str_value(obj, "as:mediaType"),
        source=source,
        source_mediatype=source_mediatype,
        start_time=_str_value(obj, "as:startTime"),
        end_time=_str_value(obj, "as:endTime"),
        location=location,
        latitude=_as_coordinate(
            jsonld.value_of(
                jsonld.fetch_element(
                    obj, "as:location", "as:latitude", "@type", "as:Place"
                )
            )
        ),
        longitude=_as_coordinate(
            jsonld.value_of(
                jsonld.fetch_element(
                    obj, "as:location", "as:longitude", "@type", "as:Place"
                )
            )
        ),
        attachments=process_attachments(
            jsonld.fetch_element_array(obj, "as:attachment") or []
        ),
        tags=process_tags(jsonld.fetch_element_array(obj, "as:tag") or []),
        emojis=process_emojis(
            jsonld.fetch_element_array(obj, "as:tag", None, "@type", "toot:Emoji")
            or []
        ),
        languages=process_languages(
            jsonld.fetch_element_array(obj, "sc:inLanguage") or []
        ),
        generator=_as_str(
            jsonld.value_of(
                jsonld.fetch_element(
                    obj, "as:generator", "as:name", "@type", "as:Application"
                )
            )
        ),
        alternate_url=_alternate_url(obj),
    )

    if object_type in ["as:Audio", "as:Video"]:
        urls = ap.as_list(obj.get("as:url") or [])
        object_data.alternate_url = (
            extract_alternate_url(urls) or object_data.alternate_url
        )
        object_data.attachments += process_attachment_urls(urls)

    # Pages (Lemmy) point to an external link, it's kept as an attachment
    if (
        object_type == "as:Page"
        and object_data.alternate_url
        and not compare_link(object_data.alternate_url, object_id)
    ):
        object_data.attachments.append(Attachment(url=object_data.alternate_url))
        object_data.alternate_url = None

    if object_type == "as:Question":
        object_data.question = process_question(obj)

    audience = await get_receivers(
        services,
        obj,
        actor,
        [tag.model_dump() for tag in object_data.tags],
        fetch_unlisted=True,
    )
    object_data.receiver_urls = get_receiver_urls(obj)
    object_data.receiver = {uid: True for uid in audience.receivers}
    object_data.reception_type = dict(audience.receivers)
    object_data.unlisted = audience.unlisted

    return object_data
