"""Error taxonomy for the EPUB translation pipeline.

Fatal errors (archive and manifest problems) are raised before any call to
the translation service is made. Service errors are raised by the
translation client and converted into tagged outcomes by the orchestrator,
so they never escape a run on their own.
"""


class EpubTranslatorError(Exception):
    """Base class for every error raised by this package."""


class ArchiveFormatError(EpubTranslatorError):
    """The package is not a readable ZIP container."""


class ManifestError(ArchiveFormatError):
    """The container pointer file or the OPF manifest is missing or unparsable."""


class EntryNotFoundError(EpubTranslatorError, KeyError):
    """An archive entry was requested that does not exist."""

    def __init__(self, path: str):
        super().__init__(path)
        self.path = path

    def __str__(self) -> str:
        return f"Entry not found in archive: {self.path}"


class TranslationServiceError(EpubTranslatorError):
    """A translation call failed for a reason other than rate limiting."""


class RateLimitedError(TranslationServiceError):
    """The translation service signalled quota exhaustion (HTTP 429)."""


class TranslationFailedError(EpubTranslatorError):
    """The run cannot continue (e.g. the service rejected the credentials)."""


class TranslationCancelledError(EpubTranslatorError):
    """The run was stopped by a cancellation request.

    The last saved resume record is left in place so the run can be resumed.
    """
