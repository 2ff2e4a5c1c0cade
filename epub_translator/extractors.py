"""Translatable Node Extraction for EPUB Content Documents.

This module parses one XHTML content document and yields the ordered list
of translatable markup nodes, bound to the live tree so that translated
fragments can be written back in place.

The extractor features:
    - Normalisation of non-XML character entities before parsing
    - Single deterministic document-order traversal
    - Index-addressed node handles (document index, node index)
    - Detection of container nodes (matching nodes that wrap other matches)
      and of enclosed nodes (translated as part of an enclosing node)
    - Fragment helpers used by the orchestrator and the validator

Classes:
    NodeHandle: Addressable reference to one translatable element
    ExtractedDocument: Parsed tree plus its node arena
    NodeExtractor: Parses documents and collects nodes

Example:
    Basic extractor usage:

    >>> extractor = NodeExtractor()
    >>> document = extractor.extract(archive.read(path), {"p", "h1"}, document_index=0)
    >>> for handle in document.handles:
    ...     print(handle.node_index, handle.tag, inner_markup(handle.element))
    >>> archive.write(path, document.serialize())

Note:
    Node indices only depend on the document bytes and the tag set, so a
    resumed run recomputes exactly the same indices.
"""

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from html.entities import html5

from bs4 import BeautifulSoup, NavigableString, Tag, UnicodeDammit
from bs4.element import PreformattedString
from lxml import etree

logger = logging.getLogger(__name__)

PARSER_FEATURES = "lxml-xml"

XML_ENTITIES = frozenset({"amp", "lt", "gt", "quot", "apos"})

# Known substitutions for entities that are frequently malformed in real books
ENTITY_SUBSTITUTIONS = {
    "nbsp": " ",
    "ensp": " ",
    "emsp": " ",
    "thinsp": " ",
    "shy": "",
}

_ENTITY_RE = re.compile(r"&(#[0-9]+;|#[xX][0-9a-fA-F]+;|[A-Za-z][A-Za-z0-9]*;)?")
_WHITESPACE_RE = re.compile(r"\s+")
_XML_DECLARATION_RE = re.compile(r"^\s*<\?xml[^>]*\?>")


def normalize_entities(markup: str) -> str:
    """
    Rewrite character entities that an XML parser would reject.

    XML's predefined entities and numeric references are kept. Named HTML
    entities are replaced with their literal character, unknown names with
    a space, and a bare ``&`` is escaped.

    Args:
        markup: Raw document or fragment markup

    Returns:
        Markup safe for an XML parser
    """

    def replace(match: re.Match) -> str:
        body = match.group(1)
        if body is None:
            return "&amp;"
        if body.startswith("#"):
            return match.group(0)

        name = body[:-1]
        if name in XML_ENTITIES:
            return match.group(0)
        if name in ENTITY_SUBSTITUTIONS:
            return ENTITY_SUBSTITUTIONS[name]

        literal = html5.get(body)
        if literal is not None and literal not in "<&":
            return literal

        logger.debug(f"Unknown entity replaced with a space: &{body}")
        return " "

    return _ENTITY_RE.sub(replace, markup)


def decode_document(data: bytes) -> str:
    """Decode document bytes, honouring the declared encoding when present."""
    dammit = UnicodeDammit(data, ["utf-8"], is_html=False)
    if dammit.unicode_markup is None:
        return data.decode("utf-8", errors="replace")
    return dammit.unicode_markup


def parse_markup(markup: str) -> BeautifulSoup:
    """Parse normalised markup into a tree."""
    return BeautifulSoup(normalize_entities(markup), PARSER_FEATURES)


def inner_markup(element: Tag) -> str:
    """Inner content of an element, trimmed."""
    return element.decode_contents().strip()


def namespace_declarations(element: Tag | None) -> dict[str, str]:
    """``xmlns`` attributes declared on an element (usually the document root)."""
    if element is None:
        return {}
    return {k: v for k, v in element.attrs.items() if k == "xmlns" or k.startswith("xmlns:")}


def parse_fragment(fragment: str, namespaces: dict[str, str] | None = None) -> Tag:
    """
    Parse an inner-content fragment.

    The fragment is wrapped in a synthetic element that re-declares the
    document's namespaces, so prefixed attributes such as ``epub:type``
    stay bound.

    Returns:
        The wrapper element; its children are the fragment's nodes
    """
    soup = parse_markup(_wrap_fragment(fragment, namespaces))
    wrapper = soup.find("fragment")
    if wrapper is None:
        wrapper = soup.new_tag("fragment")
    return wrapper


def _wrap_fragment(fragment: str, namespaces: dict[str, str] | None) -> str:
    attrs = "".join(
        f' {name}="{value}"' for name, value in sorted((namespaces or {}).items())
    )
    return f"<fragment{attrs}>{fragment}</fragment>"


def is_well_formed(fragment: str, namespaces: dict[str, str] | None = None) -> bool:
    """
    Check that a fragment parses without recovery.

    The tree builder silently repairs broken markup (an unclosed ``<br>``
    swallows the text after it), so translated fragments are checked with a
    strict parser before they are written back.
    """
    markup = normalize_entities(_wrap_fragment(fragment, namespaces))
    parser = etree.XMLParser(recover=False, resolve_entities=False)
    try:
        etree.fromstring(markup.encode("utf-8"), parser=parser)
    except etree.XMLSyntaxError:
        return False
    return True


def replace_inner_markup(
    element: Tag, fragment: str, namespaces: dict[str, str] | None = None
) -> None:
    """Replace the children of ``element`` with the parsed ``fragment``.

    The element's own tag and attributes are left untouched.
    """
    wrapper = parse_fragment(fragment, namespaces)
    element.clear()
    for child in list(wrapper.contents):
        element.append(child.extract())


def plain_text(fragment: str, namespaces: dict[str, str] | None = None) -> str:
    """Text content of a fragment, tags stripped and whitespace collapsed."""
    wrapper = parse_fragment(fragment, namespaces)
    return _WHITESPACE_RE.sub(" ", wrapper.get_text(" ")).strip()


def word_count(fragment: str, namespaces: dict[str, str] | None = None) -> int:
    return len(plain_text(fragment, namespaces).split())


def normalize_fragment(fragment: str) -> str:
    """Whitespace-normalised form of a fragment, used for comparisons and cache keys."""
    return _WHITESPACE_RE.sub(" ", fragment).strip()


def markup_signature(
    fragment: str, namespaces: dict[str, str] | None = None
) -> list[tuple[str, tuple[tuple[str, str], ...], int]]:
    """Ordered sequence of (tag, attributes, depth) found in a fragment."""
    signature = []

    def walk(element: Tag, depth: int) -> None:
        for child in element.children:
            if isinstance(child, Tag):
                attrs = tuple(sorted((str(k), _attr_value(v)) for k, v in child.attrs.items()))
                signature.append((child.name, attrs, depth))
                walk(child, depth + 1)

    walk(parse_fragment(fragment, namespaces), 0)
    return signature


def _has_loose_text(element: Tag, matched: dict[int, int]) -> bool:
    """True when ``element`` holds text outside its matching descendants."""
    for child in element.children:
        if isinstance(child, Tag):
            if id(child) not in matched and _has_loose_text(child, matched):
                return True
        elif isinstance(child, NavigableString) and not isinstance(child, PreformattedString):
            if child.strip():
                return True
    return False


def _attr_value(value) -> str:
    if isinstance(value, (list, tuple)):
        return " ".join(value)
    return str(value)


@dataclass
class NodeHandle:
    """Reference to one translatable element inside a parsed document.

    Attributes:
        document_index: Position of the owning document in reading order
        node_index: Position among matching elements in document order
        tag: Element name
        element: Live element in the owning document's tree
        container: True when the element only wraps other matching
            elements (no text of its own); containers are never dispatched
        enclosed: True when a matching ancestor with text of its own is
            translated as one unit, this element included
    """

    document_index: int
    node_index: int
    tag: str
    element: Tag
    container: bool = False
    enclosed: bool = False

    @property
    def key(self) -> tuple[int, int]:
        return (self.document_index, self.node_index)

    def source(self) -> str:
        return inner_markup(self.element)


@dataclass
class ExtractedDocument:
    """A parsed content document and the arena of its translatable nodes."""

    path: str
    document_index: int
    tree: BeautifulSoup
    handles: list[NodeHandle] = field(default_factory=list)

    @property
    def namespaces(self) -> dict[str, str]:
        root = next((c for c in self.tree.contents if isinstance(c, Tag)), None)
        return namespace_declarations(root)

    def handle(self, node_index: int) -> NodeHandle:
        return self.handles[node_index]

    def apply(self, node_index: int, fragment: str) -> None:
        """Write a translated fragment into the node's inner content."""
        replace_inner_markup(self.handles[node_index].element, fragment, self.namespaces)

    def serialize(self) -> bytes:
        return self.tree.encode("utf-8")

    def __len__(self) -> int:
        return len(self.handles)


class NodeExtractor:
    """Parses content documents and collects their translatable nodes."""

    def extract(
        self,
        document: bytes | str,
        tag_set: Iterable[str],
        document_index: int = 0,
        path: str = "",
    ) -> ExtractedDocument:
        """
        Parse a document and collect nodes matching ``tag_set``.

        Args:
            document: Document bytes (or already decoded text)
            tag_set: Element names considered translatable
            document_index: Position of the document in reading order
            path: Archive path, kept for logging

        Returns:
            ExtractedDocument bound to the parsed tree
        """
        text = decode_document(document) if isinstance(document, bytes) else document
        # The serializer writes its own declaration
        tree = parse_markup(_XML_DECLARATION_RE.sub("", text, count=1))
        tags = {t.lower() for t in tag_set}

        handles: list[NodeHandle] = []
        positions: dict[int, int] = {}

        for element in tree.find_all(lambda t: t.name.lower() in tags):
            if not inner_markup(element):
                continue
            handle = NodeHandle(
                document_index=document_index,
                node_index=len(handles),
                tag=element.name,
                element=element,
            )
            positions[id(element)] = handle.node_index
            handles.append(handle)

        wrapping: set[int] = set()
        for handle in handles:
            for parent in handle.element.parents:
                index = positions.get(id(parent))
                if index is not None:
                    wrapping.add(index)

        # A wrapping element with loose text is translated whole
        units: set[int] = set()
        for index in wrapping:
            if _has_loose_text(handles[index].element, positions):
                units.add(index)
            else:
                handles[index].container = True

        for handle in handles:
            if any(positions.get(id(parent)) in units for parent in handle.element.parents):
                handle.enclosed = True
                handle.container = False

        containers = sum(1 for h in handles if h.container)
        enclosed = sum(1 for h in handles if h.enclosed)
        logger.debug(
            f"Document {document_index} {path}: {len(handles)} nodes "
            f"({containers} containers, {enclosed} enclosed)"
        )

        return ExtractedDocument(
            path=path, document_index=document_index, tree=tree, handles=handles
        )
