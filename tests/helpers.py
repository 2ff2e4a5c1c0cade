"""Builders and fakes shared by the test suite."""

import asyncio
import io
import re
import zipfile

from epub_translator.errors import RateLimitedError, TranslationFailedError, TranslationServiceError
from epub_translator.style import StyleProfile
from epub_translator.translator import TranslationService, UsageStats

CONTAINER_XML = """<?xml version="1.0" encoding="UTF-8"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="{opf_path}" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>"""

OPF_TEMPLATE = """<?xml version="1.0" encoding="UTF-8"?>
<package xmlns="http://www.idpf.org/2007/opf" version="3.0" unique-identifier="bookid">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/">
    <dc:identifier id="bookid">urn:uuid:12345</dc:identifier>
    <dc:title>{title}</dc:title>
    <dc:creator>{creator}</dc:creator>
    <dc:description>{description}</dc:description>
    <dc:language>en</dc:language>
  </metadata>
  <manifest>
{items}
  </manifest>
  <spine>
{itemrefs}
  </spine>
</package>"""

XHTML_TEMPLATE = """<?xml version="1.0" encoding="utf-8"?>
<!DOCTYPE html>
<html xmlns="http://www.w3.org/1999/xhtml" xmlns:epub="http://www.idpf.org/2007/ops">
<head><title>{title}</title></head>
<body>
{body}
</body>
</html>"""


def xhtml(body: str, title: str = "Chapter") -> str:
    """Wrap a body fragment in a complete XHTML document."""
    return XHTML_TEMPLATE.format(title=title, body=body)


def build_epub(
    chapters,
    title="Sample Book",
    creator="Jane Author",
    description="A short novel.",
    missing=(),
    opf_dir="OEBPS",
    extra_entries=None,
):
    """
    Build EPUB bytes.

    Args:
        chapters: List of (file name, body fragment) in reading order
        missing: File names referenced by the spine but left out of the archive
        opf_dir: Folder holding the OPF and the documents
        extra_entries: Additional raw entries {path: bytes}
    """
    prefix = f"{opf_dir}/" if opf_dir else ""
    items = []
    itemrefs = []
    for index, (name, _) in enumerate(chapters):
        items.append(
            f'    <item id="ch{index}" href="{name}" media-type="application/xhtml+xml"/>'
        )
        itemrefs.append(f'    <itemref idref="ch{index}"/>')

    opf = OPF_TEMPLATE.format(
        title=title,
        creator=creator,
        description=description,
        items="\n".join(items),
        itemrefs="\n".join(itemrefs),
    )

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        zf.writestr(zipfile.ZipInfo("mimetype", (2020, 5, 17, 12, 0, 0)), b"application/epub+zip")
        zf.writestr(
            zipfile.ZipInfo("META-INF/container.xml", (2020, 5, 17, 12, 0, 0)),
            CONTAINER_XML.format(opf_path=f"{prefix}content.opf"),
        )
        zf.writestr(zipfile.ZipInfo(f"{prefix}content.opf", (2020, 5, 17, 12, 0, 0)), opf)
        for name, body in chapters:
            if name in missing:
                continue
            zf.writestr(
                zipfile.ZipInfo(f"{prefix}{name}", (2020, 5, 17, 12, 0, 0)),
                xhtml(body, title=name).encode("utf-8"),
            )
        for path, data in (extra_entries or {}).items():
            zf.writestr(zipfile.ZipInfo(path, (2020, 5, 17, 12, 0, 0)), data)
    return buffer.getvalue()


_TEXT_RE = re.compile(r"(^|>)([^<]*\S[^<]*)")


def fake_translate(fragment: str) -> str:
    """Deterministic 'translation': every text run gets a TR marker, markup untouched."""
    return _TEXT_RE.sub(lambda m: f"{m.group(1)}TR[{m.group(2).strip()}]", fragment.strip())


class FakeTranslationService(TranslationService):
    """Scriptable translation service.

    ``script`` maps a substring of the fragment to a list of actions consumed
    one per call: "rate_limit", "error", "fatal", "identical", "malformed"
    (void elements left unclosed) or "ok".
    """

    def __init__(self, delay=0.0, script=None, on_call=None):
        self.delay = delay
        self.script = {key: list(actions) for key, actions in (script or {}).items()}
        self.on_call = on_call
        self.usage = UsageStats()
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    def _next_action(self, fragment: str) -> str:
        for key, actions in self.script.items():
            if key in fragment and actions:
                return actions.pop(0)
        return "ok"

    async def translate(
        self,
        fragment,
        source_language,
        target_language,
        style_profile,
        temperature,
        strict=False,
    ):
        self.calls.append({"fragment": fragment, "strict": strict, "temperature": temperature})
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.on_call:
                self.on_call(fragment)
            await asyncio.sleep(self.delay)

            action = self._next_action(fragment)
            if action == "rate_limit":
                raise RateLimitedError("429 Resource has been exhausted")
            if action == "error":
                raise TranslationServiceError("Service unavailable")
            if action == "fatal":
                raise TranslationFailedError("Authentication failed")
            if action == "identical":
                return fragment
            if action == "malformed":
                return fake_translate(fragment).replace("<br/>", "<br>")

            self.usage.total_tokens += 10
            return fake_translate(fragment)
        finally:
            self.in_flight -= 1

    @property
    def fragments(self):
        return [call["fragment"] for call in self.calls]


class FakeStyleAnalyzer:
    """Style analyser returning a fixed profile and counting calls."""

    def __init__(self, profile=None):
        self.profile = profile or StyleProfile(genre="Gothic Novel", tone="Dark", variability=0.4)
        self.calls = 0
        self.usage_tokens = 0

    async def analyze(self, metadata):
        self.calls += 1
        return self.profile


