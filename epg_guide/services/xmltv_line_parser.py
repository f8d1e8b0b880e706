"""
Streaming XMLTV parser

Parses a constrained, line-oriented subset of XMLTV without building a document
tree. Each line is classified by tokenize_line() and fed into a small state
machine scoped to the enclosing <channel> or <programme> element.

Grammar restriction: an element's tag, attributes and text must sit on a single
line. The only multi-line constructs understood are the <channel>/<programme>
scopes themselves and <star-rating>/<rating> blocks wrapping a <value> line.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, Mapping
import hashlib
import logging
import re
import threading

from epg_guide.services.fetch_types import ChannelRecord, ParseResult, ProgrammeRecord
from epg_guide.utils.timezone import normalize_xmltv_timestamp

logger = logging.getLogger(__name__)

PROGRESS_LOG_INTERVAL = 100_000

_START_TAG = re.compile(
    r"<([A-Za-z_][\w.:-]*)((?:\s+[^\s=/>]+\s*=\s*(?:\"[^\"]*\"|'[^']*'))*)\s*(/?)>"
)
_END_TAG = re.compile(r"</([A-Za-z_][\w.:-]*)\s*>")
_ATTRIBUTE = re.compile(r"([^\s=/>]+)\s*=\s*(?:\"([^\"]*)\"|'([^']*)')")
_VALUE_ELEMENT = re.compile(r"<value(?:\s[^>]*)?>([^<]+)</value\s*>")


class TokenKind(Enum):
    SKIP = "skip"
    START = "start"
    END = "end"
    ELEMENT = "element"
    EMPTY = "empty"
    TEXT = "text"


@dataclass(frozen=True, slots=True)
class LineToken:
    kind: TokenKind
    tag: str | None = None
    attributes: Mapping[str, str] = field(default_factory=dict)
    text: str = ""


_SKIP_TOKEN = LineToken(TokenKind.SKIP)


def is_envelope_line(trimmed: str) -> bool:
    """True for blank lines, declarations and the outer <tv> wrapper."""
    return (
        not trimmed
        or trimmed.startswith(("<?", "<!"))
        or trimmed in ("<tv>", "</tv>")
        or trimmed.startswith("<tv ")
    )


def _parse_attributes(raw: str) -> dict[str, str]:
    return {
        match.group(1): match.group(2) if match.group(2) is not None else match.group(3)
        for match in _ATTRIBUTE.finditer(raw)
    }


def tokenize_line(line: str) -> LineToken:
    """
    Classify a single line of XMLTV

    Args:
        line: Raw line, leading/trailing whitespace is ignored

    Returns:
        LineToken describing the line. ELEMENT tokens carry the inner text of a
        tag opened and closed on the same line; START tokens carry any text that
        follows an unclosed opening tag.
    """
    trimmed = line.strip()
    if is_envelope_line(trimmed):
        return _SKIP_TOKEN

    end_match = _END_TAG.fullmatch(trimmed)
    if end_match:
        return LineToken(TokenKind.END, tag=end_match.group(1))

    start_match = _START_TAG.match(trimmed)
    if not start_match:
        return LineToken(TokenKind.TEXT, text=trimmed)

    tag, raw_attributes, self_closing = start_match.groups()
    attributes = _parse_attributes(raw_attributes)
    if self_closing:
        return LineToken(TokenKind.EMPTY, tag=tag, attributes=attributes)

    rest = trimmed[start_match.end():]
    close_match = re.search(rf"</{re.escape(tag)}\s*>$", rest)
    if close_match:
        return LineToken(
            TokenKind.ELEMENT,
            tag=tag,
            attributes=attributes,
            text=rest[:close_match.start()],
        )

    return LineToken(TokenKind.START, tag=tag, attributes=attributes, text=rest)


class Scope(Enum):
    NONE = "none"
    CHANNEL = "channel"
    PROGRAMME = "programme"


@dataclass(slots=True)
class _ChannelDraft:
    channel_id: str | None = None
    display_name: str | None = None
    icon_url: str | None = None


@dataclass(slots=True)
class _ProgrammeDraft:
    channel_id: str | None = None
    start: str | None = None
    stop: str | None = None
    title: str | None = None
    sub_title: str | None = None
    description: str | None = None
    categories: list[str] = field(default_factory=list)
    date: str | None = None
    episode_number: str | None = None
    episode_system: str | None = None
    previously_shown: bool = False
    star_rating: str | None = None
    content_rating: str | None = None
    content_rating_system: str | None = None


def _plain_text(token: LineToken) -> str | None:
    """Inner text of a single-line element, or None if it is empty or nested markup."""
    text = token.text.strip()
    if not text or "<" in text:
        return None
    return text


def make_programme_id(channel_id: str, start: str | None, stop: str | None, title: str) -> str:
    """Deterministic programme identifier derived from its identifying content."""
    key = "\x1f".join((channel_id, start or "", stop or "", title))
    return hashlib.sha1(key.encode("utf-8")).hexdigest()


class XmltvLineParser:
    """
    Line-at-a-time XMLTV state machine.

    A fresh parser should be used for every parse. Malformed or incomplete
    elements are dropped and counted; feed() never raises on unexpected input.
    """

    def __init__(self):
        self._scope = Scope.NONE
        self._nested: str | None = None
        self._channel = _ChannelDraft()
        self._programme = _ProgrammeDraft()
        self._result = ParseResult()

    @property
    def scope(self) -> Scope:
        return self._scope

    def feed(self, line: str) -> None:
        """Process one line of input."""
        self._result.lines_processed += 1
        token = tokenize_line(line)
        if token.kind is TokenKind.SKIP:
            return

        if token.kind is TokenKind.START and token.tag == "channel":
            self._open_channel(token)
        elif token.kind is TokenKind.START and token.tag == "programme":
            self._open_programme(token)
        elif token.kind is TokenKind.END and token.tag == "channel":
            if self._scope is Scope.CHANNEL:
                self._close_channel()
        elif token.kind is TokenKind.END and token.tag == "programme":
            if self._scope is Scope.PROGRAMME:
                self._close_programme()
        elif self._scope is Scope.CHANNEL:
            self._channel_content(token)
        elif self._scope is Scope.PROGRAMME:
            self._programme_content(token)

    def feed_lines(
        self,
        lines: Iterable[str],
        cancel_event: threading.Event | None = None
    ) -> ParseResult:
        """Feed every line of an iterable and return the accumulated result.

        If cancel_event is set, feeding stops before the next line and the
        partial result is returned.
        """
        for line in lines:
            if cancel_event is not None and cancel_event.is_set():
                logger.warning(
                    "XMLTV parsing cancelled after %s lines", self._result.lines_processed
                )
                break
            self.feed(line)
            if self._result.lines_processed % PROGRESS_LOG_INTERVAL == 0:
                logger.info(
                    "Processed %s lines (%s programmes so far)...",
                    self._result.lines_processed,
                    len(self._result.programmes),
                )
        return self.result()

    def result(self) -> ParseResult:
        """Return the accumulated channels and programmes.

        An element still open at end of input is discarded.
        """
        if self._scope is not Scope.NONE:
            self._discard_open_scope()
        return self._result

    def _discard_open_scope(self) -> None:
        if self._scope is Scope.CHANNEL:
            self._result.channels_dropped += 1
        elif self._scope is Scope.PROGRAMME:
            self._result.programmes_dropped += 1
        self._scope = Scope.NONE
        self._nested = None

    def _open_channel(self, token: LineToken) -> None:
        self._discard_open_scope()
        self._scope = Scope.CHANNEL
        self._channel = _ChannelDraft(channel_id=token.attributes.get("id") or None)

    def _close_channel(self) -> None:
        draft = self._channel
        self._scope = Scope.NONE
        if not draft.channel_id or not draft.display_name:
            logger.debug("Dropping channel without id or display-name: %s", draft.channel_id)
            self._result.channels_dropped += 1
            return

        # Last definition wins, but the channel keeps its first position
        self._result.channels[draft.channel_id] = ChannelRecord(
            channel_id=draft.channel_id,
            display_name=draft.display_name,
            icon_url=draft.icon_url,
        )

    def _channel_content(self, token: LineToken) -> None:
        if token.tag == "display-name" and token.kind is TokenKind.ELEMENT:
            text = _plain_text(token)
            # First display-name wins, later ones are ignored
            if text and self._channel.display_name is None:
                self._channel.display_name = text
        elif token.tag == "icon" and token.kind in (TokenKind.EMPTY, TokenKind.ELEMENT, TokenKind.START):
            src = token.attributes.get("src")
            if src and self._channel.icon_url is None:
                self._channel.icon_url = src

    def _open_programme(self, token: LineToken) -> None:
        self._discard_open_scope()
        self._scope = Scope.PROGRAMME
        self._programme = _ProgrammeDraft(
            channel_id=token.attributes.get("channel") or None,
            start=token.attributes.get("start") or None,
            stop=token.attributes.get("stop") or None,
        )

    def _close_programme(self) -> None:
        draft = self._programme
        self._scope = Scope.NONE
        self._nested = None
        if not draft.channel_id or not draft.title:
            logger.debug("Dropping programme without channel or title on %s", draft.channel_id)
            self._result.programmes_dropped += 1
            return

        start = normalize_xmltv_timestamp(draft.start)
        stop = normalize_xmltv_timestamp(draft.stop)
        self._result.programmes.append(ProgrammeRecord(
            id=make_programme_id(draft.channel_id, start, stop, draft.title),
            channel_id=draft.channel_id,
            start=start,
            stop=stop,
            title=draft.title,
            sub_title=draft.sub_title or "",
            description=draft.description or "",
            genre=", ".join(draft.categories),
            date=draft.date,
            episode_number=draft.episode_number or "",
            previously_shown=draft.previously_shown,
            star_rating=draft.star_rating,
            content_rating=draft.content_rating,
            content_rating_system=draft.content_rating_system,
        ))

    def _programme_content(self, token: LineToken) -> None:
        draft = self._programme

        if self._nested is not None:
            if token.kind is TokenKind.END and token.tag == self._nested:
                self._nested = None
            elif token.kind is TokenKind.ELEMENT and token.tag == "value":
                self._assign_rating(self._nested, _plain_text(token))
            return

        tag = token.tag
        if tag == "previously-shown" and token.kind is not TokenKind.END:
            draft.previously_shown = True
            return

        if tag in ("star-rating", "rating") and token.kind in (TokenKind.START, TokenKind.ELEMENT):
            if tag == "rating" and draft.content_rating_system is None:
                draft.content_rating_system = token.attributes.get("system") or None
            value = _VALUE_ELEMENT.search(token.text)
            if value:
                self._assign_rating(tag, value.group(1).strip())
            if token.kind is TokenKind.START:
                self._nested = tag
            return

        if token.kind is not TokenKind.ELEMENT:
            return

        text = _plain_text(token)
        if text is None:
            return

        # Repeated title, sub-title and desc: the first value wins
        if tag == "title":
            if draft.title is None:
                draft.title = text
        elif tag == "sub-title":
            if draft.sub_title is None:
                draft.sub_title = text
        elif tag == "desc":
            if draft.description is None:
                draft.description = text
        elif tag == "date":
            draft.date = text
        elif tag == "category":
            draft.categories.append(text)
        elif tag == "episode-num":
            system = token.attributes.get("system")
            if draft.episode_number is None or (
                system == "onscreen" and draft.episode_system != "onscreen"
            ):
                draft.episode_number = text
                draft.episode_system = system

    def _assign_rating(self, tag: str, value: str | None) -> None:
        if not value:
            return
        if tag == "star-rating":
            if self._programme.star_rating is None:
                self._programme.star_rating = value
        elif self._programme.content_rating is None:
            self._programme.content_rating = value


def parse_xmltv_lines(
    lines: Iterable[str],
    cancel_event: threading.Event | None = None
) -> ParseResult:
    """Parse an iterable of XMLTV lines with a fresh parser."""
    return XmltvLineParser().feed_lines(lines, cancel_event)


def parse_xmltv_file(
    file_path: Path | str,
    cancel_event: threading.Event | None = None
) -> ParseResult:
    """
    Parse XMLTV file line by line and return channels and programmes

    Args:
        file_path: Path to a plain-text (already decompressed) XMLTV file
        cancel_event: Optional event that stops parsing early when set

    Returns:
        ParseResult with committed channels, programmes and drop counters

    Raises:
        FileNotFoundError: If file doesn't exist
        OSError: If file can't be read
    """
    logger.debug(f"Parsing XMLTV file: {file_path}")

    with open(file_path, encoding="utf-8", errors="replace") as handle:
        result = parse_xmltv_lines(handle, cancel_event)

    logger.info(
        "XMLTV parsing complete: %s lines, %s channels, %s programmes "
        "(dropped %s channels, %s programmes)",
        result.lines_processed,
        len(result.channels),
        len(result.programmes),
        result.channels_dropped,
        result.programmes_dropped,
    )
    return result
