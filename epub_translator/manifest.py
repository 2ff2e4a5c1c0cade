"""Package Manifest Resolver.

Turns the container pointer file and the OPF package document into the
ordered list of content documents (reading order) plus the book metadata
used for the style analysis.

A spine reference that points at a missing archive entry is dropped with a
warning; only a missing or unparsable pointer file / manifest is fatal.
"""

import logging
import posixpath
from dataclasses import dataclass
from urllib.parse import unquote

from ebooklib.epub import NAMESPACES
from lxml import etree

from .archive import EpubArchive
from .errors import ManifestError

logger = logging.getLogger(__name__)

CONTAINER_PATH = "META-INF/container.xml"

_NS = {
    "container": NAMESPACES["CONTAINERNS"],
    "opf": NAMESPACES["OPF"],
    "dc": NAMESPACES["DC"],
}


@dataclass
class BookMetadata:
    """Descriptive metadata of the book."""

    title: str = "Untitled"
    creator: str = "Unknown"
    description: str = ""
    language: str = ""


@dataclass
class ResolvedPackage:
    """Result of resolving a package."""

    opf_path: str
    document_paths: list[str]
    metadata: BookMetadata
    missing_references: list[str]


class ManifestResolver:
    """Resolves the reading order of an EPUB package."""

    def resolve(self, archive: EpubArchive) -> tuple[list[str], BookMetadata]:
        """
        Resolve the ordered content documents of the archive.

        Args:
            archive: Opened archive

        Returns:
            Tuple (ordered document paths, metadata)

        Raises:
            ManifestError: If the pointer file or the manifest is missing/unparsable
        """
        package = self.resolve_package(archive)
        return package.document_paths, package.metadata

    def resolve_package(self, archive: EpubArchive) -> ResolvedPackage:
        """Like :meth:`resolve`, keeping the OPF path and dropped references."""
        opf_path = self._find_opf_path(archive)
        opf_root = self._parse(archive, opf_path, "package manifest")

        metadata = self._extract_metadata(opf_root)
        opf_folder = posixpath.dirname(opf_path)

        id_to_href = {}
        for item in opf_root.findall("opf:manifest/opf:item", namespaces=_NS):
            item_id = item.get("id")
            href = item.get("href")
            if item_id and href:
                id_to_href[item_id] = href

        if not id_to_href:
            raise ManifestError(f"Manifest has no items: {opf_path}")

        document_paths: list[str] = []
        missing: list[str] = []

        for itemref in opf_root.findall("opf:spine/opf:itemref", namespaces=_NS):
            idref = itemref.get("idref", "")
            href = id_to_href.get(idref)
            if href is None:
                logger.warning(f"Spine reference '{idref}' has no manifest item - dropped")
                missing.append(idref)
                continue

            path = self._locate(archive, opf_folder, href)
            if path is None:
                logger.warning(f"Spine document not found in archive - dropped: {href}")
                missing.append(href)
                continue

            if path in document_paths:
                logger.debug(f"Duplicate spine reference ignored: {path}")
                continue

            document_paths.append(path)

        logger.info(
            f"Manifest resolved: {len(document_paths)} documents, "
            f"{len(missing)} missing references ({metadata.title} / {metadata.creator})"
        )

        return ResolvedPackage(
            opf_path=opf_path,
            document_paths=document_paths,
            metadata=metadata,
            missing_references=missing,
        )

    def _find_opf_path(self, archive: EpubArchive) -> str:
        if not archive.exists(CONTAINER_PATH):
            raise ManifestError(f"Container pointer file is missing: {CONTAINER_PATH}")

        root = self._parse(archive, CONTAINER_PATH, "container pointer file")
        rootfile = root.find(".//container:rootfile", namespaces=_NS)
        opf_path = rootfile.get("full-path", "") if rootfile is not None else ""

        if not opf_path:
            raise ManifestError("Container pointer file declares no rootfile")

        opf_path = unquote(opf_path)
        if not archive.exists(opf_path):
            raise ManifestError(f"Package manifest is missing: {opf_path}")

        return opf_path

    def _parse(self, archive: EpubArchive, path: str, what: str):
        try:
            return etree.fromstring(archive.read(path), parser=etree.XMLParser(resolve_entities=False))
        except etree.XMLSyntaxError as e:
            raise ManifestError(f"Unparsable {what} {path}: {e}") from e

    def _extract_metadata(self, opf_root) -> BookMetadata:
        def first_text(tag: str) -> str:
            element = opf_root.find(f"opf:metadata/dc:{tag}", namespaces=_NS)
            if element is None or not (element.text or "").strip():
                return ""
            return element.text.strip()

        return BookMetadata(
            title=first_text("title") or "Untitled",
            creator=first_text("creator") or "Unknown",
            description=first_text("description"),
            language=first_text("language"),
        )

    def _locate(self, archive: EpubArchive, opf_folder: str, href: str) -> str | None:
        """Resolve a manifest href to an existing archive path (decoded form first)."""
        href = href.split("#", 1)[0]
        raw = posixpath.normpath(posixpath.join(opf_folder, href)) if opf_folder else posixpath.normpath(href)

        for candidate in (unquote(raw), raw):
            if archive.exists(candidate):
                return candidate
        return None
