# Test configuration for the EPUB Translator project
# This file configures pytest and provides common fixtures

import shutil
import tempfile

import pytest

from epub_translator.cache import MemoryStore
from tests.helpers import FakeStyleAnalyzer, FakeTranslationService, build_epub


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    temp_path = tempfile.mkdtemp()
    yield temp_path
    shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def fake_service():
    return FakeTranslationService()


@pytest.fixture
def fake_analyzer():
    return FakeStyleAnalyzer()


@pytest.fixture
def ten_paragraphs():
    """Body with ten translatable paragraphs."""
    return "\n".join(
        f'<p class="para">Paragraph number {i} of the <em>story</em>.</p>' for i in range(10)
    )


@pytest.fixture
def sample_epub():
    """Three-chapter EPUB."""
    return build_epub(
        [
            ("chapter1.xhtml", '<h1>Chapter One</h1>\n<p>It was a dark night.</p>\n<p>The wind <em>howled</em> outside.</p>'),
            ("chapter2.xhtml", '<h1 epub:type="title">Chapter Two</h1>\n<p>Morning came slowly.</p>'),
            ("chapter3.xhtml", '<blockquote><p>Nested quote text.</p></blockquote>\n<p>The end.</p>'),
        ]
    )


# Global pytest configuration
def pytest_configure(config):
    """Global pytest configuration."""
    import warnings

    warnings.filterwarnings("ignore", category=DeprecationWarning)
