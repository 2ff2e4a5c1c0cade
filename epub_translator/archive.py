"""Archive Store - in-memory, addressable view over an EPUB container.

The archive keeps every entry of the source package in its original order.
Only entries that are explicitly written are replaced; everything else is
written back byte-for-byte when the package is serialised.

Example:
    >>> archive = EpubArchive.from_file("book.epub")
    >>> html = archive.read("OEBPS/chapter1.xhtml")
    >>> archive.write("OEBPS/chapter1.xhtml", html.replace(b"Hello", b"Merhaba"))
    >>> Path("book_tr.epub").write_bytes(archive.serialize())
"""

import io
import logging
import os
import zipfile

from .errors import ArchiveFormatError, EntryNotFoundError

logger = logging.getLogger(__name__)

MIMETYPE_PATH = "mimetype"
EPUB_MIMETYPE = b"application/epub+zip"

# Timestamp used for entries that did not exist in the source package
DEFAULT_DATE_TIME = (1980, 1, 1, 0, 0, 0)


class EpubArchive:
    """Ordered, mutable collection of named binary entries.

    Attributes:
        source_name: Name of the package the archive was opened from
    """

    def __init__(self, source_name: str = ""):
        self.source_name = source_name
        self._entries: dict[str, bytes] = {}
        self._infos: dict[str, zipfile.ZipInfo] = {}
        self._written: set[str] = set()

    @classmethod
    def open(cls, data: bytes, source_name: str = "") -> "EpubArchive":
        """
        Open a package from its raw bytes.

        Args:
            data: Bytes of the ZIP container
            source_name: Optional name used in log messages

        Returns:
            Populated EpubArchive

        Raises:
            ArchiveFormatError: If the bytes are not a readable ZIP container
        """
        archive = cls(source_name)

        try:
            with zipfile.ZipFile(io.BytesIO(data)) as zf:
                for info in zf.infolist():
                    if info.is_dir():
                        continue
                    if info.filename in archive._entries:
                        logger.warning(f"Duplicate archive entry ignored: {info.filename}")
                        continue
                    archive._entries[info.filename] = zf.read(info)
                    archive._infos[info.filename] = info
        except (zipfile.BadZipFile, zipfile.LargeZipFile, EOFError) as e:
            raise ArchiveFormatError(f"Invalid EPUB package (not a valid ZIP): {e}") from e

        logger.info(
            f"Archive opened: {source_name or '<memory>'} ({len(archive._entries)} entries)"
        )
        return archive

    @classmethod
    def from_file(cls, file_path: str) -> "EpubArchive":
        """Open a package from disk."""
        if not os.path.exists(file_path):
            raise FileNotFoundError(f"File not found: {file_path}")

        with open(file_path, "rb") as f:
            return cls.open(f.read(), os.path.basename(file_path))

    def paths(self) -> list[str]:
        """Entry paths in archive order."""
        return list(self._entries)

    def exists(self, path: str) -> bool:
        return path in self._entries

    def read(self, path: str) -> bytes:
        """
        Return the bytes of an entry.

        Raises:
            EntryNotFoundError: If no entry has this path
        """
        try:
            return self._entries[path]
        except KeyError:
            raise EntryNotFoundError(path) from None

    def read_text(self, path: str, encoding: str = "utf-8") -> str:
        return self.read(path).decode(encoding, errors="replace")

    def write(self, path: str, data: bytes) -> None:
        """Replace (or add) a single entry. Other entries are never touched."""
        if path not in self._entries:
            logger.debug(f"New archive entry: {path}")
        self._entries[path] = data
        self._written.add(path)

    @property
    def written_paths(self) -> set[str]:
        return set(self._written)

    def serialize(self) -> bytes:
        """
        Build the package bytes.

        The ``mimetype`` entry is written first and stored uncompressed,
        every other entry is deflated. Entry timestamps come from the source
        package, so serialising the same content twice yields identical bytes.

        Returns:
            Bytes of the new ZIP container
        """
        buffer = io.BytesIO()

        with zipfile.ZipFile(buffer, "w") as zf:
            zf.writestr(
                self._make_info(MIMETYPE_PATH, zipfile.ZIP_STORED),
                self._entries.get(MIMETYPE_PATH, EPUB_MIMETYPE),
            )

            for path, data in self._entries.items():
                if path == MIMETYPE_PATH:
                    continue
                zf.writestr(self._make_info(path, zipfile.ZIP_DEFLATED), data)

        result = buffer.getvalue()
        logger.info(
            f"Archive serialized: {len(self._entries)} entries, "
            f"{len(self._written)} rewritten, {len(result):,} bytes"
        )
        return result

    def _make_info(self, path: str, compress_type: int) -> zipfile.ZipInfo:
        original = self._infos.get(path)
        date_time = original.date_time if original else DEFAULT_DATE_TIME

        info = zipfile.ZipInfo(path, date_time=date_time)
        info.compress_type = compress_type
        if original:
            info.external_attr = original.external_attr
            info.create_system = original.create_system
        else:
            info.external_attr = 0o644 << 16
        return info

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, path: str) -> bool:
        return path in self._entries
