"""Helpers for parsing YouTube WebSub Atom payloads into notifications."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from xml.etree import ElementTree as ET

from relay.core.errors import FormatError, ValidationError
from relay.schema.notification import Notification

logger = logging.getLogger(__name__)


ATOM_NS = "http://www.w3.org/2005/Atom"
YT_NS = "http://www.youtube.com/xml/schemas/2015"
TOMBSTONE_NS = "http://purl.org/atompub/tombstones/1.0"

CHANNEL_ID_MARKER = "channel_id="


@dataclass(slots=True)
class Author:
    name: str | None = None
    uri: str | None = None


@dataclass(slots=True)
class Link:
    rel: str | None = None
    href: str | None = None


@dataclass(slots=True)
class Entry:
    """A single `<entry>` of a hub notification."""

    id: str | None = None
    title: str | None = None
    author: Author | None = None
    published: str | None = None
    updated: str | None = None
    links: list[Link] = field(default_factory=list)
    yt_channel_id: str | None = None


@dataclass(slots=True)
class Feed:
    entry: Entry | None = None
    deleted_refs: list[str] = field(default_factory=list)


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _child(element: ET.Element, name: str, namespace: str = ATOM_NS) -> ET.Element | None:
    found = element.find(f"{{{namespace}}}{name}")
    if found is None and namespace == ATOM_NS:
        found = element.find(name)
    return found


def _text(element: ET.Element, name: str, namespace: str = ATOM_NS) -> str | None:
    child = _child(element, name, namespace)
    if child is None or child.text is None:
        return None
    return child.text.strip()


def _parse_entry(element: ET.Element) -> Entry:
    author = None
    author_el = _child(element, "author")
    if author_el is not None:
        author = Author(name=_text(author_el, "name"), uri=_text(author_el, "uri"))

    links = [
        Link(rel=link.get("rel"), href=link.get("href"))
        for link in element
        if _local(link.tag) == "link"
    ]

    return Entry(
        id=_text(element, "id"),
        title=_text(element, "title"),
        author=author,
        published=_text(element, "published"),
        updated=_text(element, "updated"),
        links=links,
        yt_channel_id=_text(element, "channelId", YT_NS),
    )


def parse_feed(payload: bytes | str) -> Feed:
    """Parse a raw Atom XML payload into a feed holding at most one entry."""

    try:
        root = ET.fromstring(payload)
    except ET.ParseError as exc:
        raise FormatError(f"Invalid request format: {exc}") from exc

    if _local(root.tag) != "feed":
        raise FormatError(f"Invalid request format: unexpected root element {root.tag}")

    feed = Feed()
    for deleted in root.findall(f"{{{TOMBSTONE_NS}}}deleted-entry"):
        ref = deleted.get("ref")
        logger.info("Ignoring deleted-entry notification", extra={"ref": ref})
        if ref:
            feed.deleted_refs.append(ref)

    entry_el = _child(root, "entry")
    if entry_el is not None:
        feed.entry = _parse_entry(entry_el)
    return feed


def validate_entry(feed: Feed) -> Entry:
    """Return the feed entry or raise `ValidationError` naming the missing part."""

    entry = feed.entry
    if entry is None:
        raise ValidationError("Missing entry element in feed", reason="missing_entry")
    if not entry.title:
        raise ValidationError("Missing or empty title in feed", reason="missing_title")
    if not entry.id:
        raise ValidationError("Missing or empty video ID in feed", reason="missing_video_id")
    return entry


def channel_id_from_topic(topic: str) -> str:
    """Return the text after `channel_id=`; the whole topic when the marker is absent."""

    _, marker, rest = topic.partition(CHANNEL_ID_MARKER)
    if not marker:
        logger.warning("Topic has no channel_id parameter", extra={"topic": topic})
        return topic
    return rest


def channel_id_from_author_uri(uri: str | None) -> str | None:
    """Return the last path segment of the author URI, if any."""

    if not uri:
        return None
    channel_id = uri.rsplit("/", 1)[-1]
    return channel_id or None


def build_notification(entry: Entry) -> Notification:
    """Convert a validated entry into a queue notification."""

    author = entry.author
    return Notification(
        video_id=entry.id or "",
        title=entry.title or "",
        channel_id=channel_id_from_author_uri(author.uri if author else None) or entry.yt_channel_id,
        channel_name=author.name if author else None,
        published=entry.published,
        updated=entry.updated,
    )
