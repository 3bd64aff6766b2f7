import logging
from dataclasses import dataclass, fields
from typing import Dict

from lxml import etree

from .errors import FilesystemError, ParseFormatError

logger = logging.getLogger("aggregator.records")

ROOT_TAG = "document"


@dataclass(frozen=True)
class Record:
    """One forum post parsed out of an extracted XML file.

    ``raw`` is the file content byte for byte; it is what gets stored and
    compared. ``post_url`` is the dedupe key. Every other field is carried
    as opaque text.
    """

    path: str
    raw: bytes
    type: str = ""
    forum: str = ""
    forum_title: str = ""
    discussion_title: str = ""
    language: str = ""
    gmt_offset: str = ""
    topic_url: str = ""
    topic_text: str = ""
    spam_score: str = ""
    post_num: str = ""
    post_id: str = ""
    post_url: str = ""
    post_date: str = ""
    post_time: str = ""
    username: str = ""
    post: str = ""
    signature: str = ""
    external_links: str = ""
    country: str = ""
    main_image: str = ""

    @property
    def key(self) -> str:
        return self.post_url


# every field except path/raw maps to a child element of the same name
RECORD_FIELDS = tuple(f.name for f in fields(Record) if f.name not in ("path", "raw"))


def _fields_from_xml(data: bytes) -> Dict[str, str]:
    parser = etree.XMLParser(resolve_entities=False, no_network=True)
    root = etree.fromstring(data, parser=parser)
    if root.tag != ROOT_TAG:
        raise ParseFormatError(f"expected element <{ROOT_TAG}> but have <{root.tag}>")

    values: Dict[str, str] = {}
    for name in RECORD_FIELDS:
        el = root.find(name)
        if el is not None:
            values[name] = "".join(el.itertext())
    return values


def parse_record(path: str) -> Record:
    try:
        with open(path, "rb") as f:
            data = f.read()
    except OSError as e:
        raise FilesystemError(f"Cannot read record file {path}: {e}") from e

    try:
        values = _fields_from_xml(data)
    except etree.XMLSyntaxError as e:
        raise ParseFormatError(f"Malformed XML in {path}: {e}") from e
    except ParseFormatError as e:
        raise ParseFormatError(f"{path}: {e}") from e

    if not values.get("post_url", "").strip():
        raise ParseFormatError(f"Record without post_url: {path}")

    return Record(path=path, raw=data, **values)
