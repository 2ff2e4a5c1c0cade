"""
Tests for the command line interface (main.py)
"""

import logging
import os
from unittest.mock import patch

import click
import pytest
from click.testing import CliRunner

from epub_translator.cache import SqliteStore
from epub_translator.checkpoint import CheckpointManager
from epub_translator.pipeline import TranslationPipeline
from main import main, parse_tags, validate_model_name
from tests.helpers import FakeStyleAnalyzer, FakeTranslationService, build_epub


class TestHelpers:
    """Tests for the option helpers."""

    @pytest.mark.parametrize(
        "model, expected",
        [
            ("gpt-4o", "openai/gpt-4o"),
            ("gemini-2.5-flash", "gemini/gemini-2.5-flash"),
            ("google/gemini-2.5-pro", "gemini/gemini-2.5-pro"),
            ("anthropic/claude-3.5-sonnet", "anthropic/claude-3.5-sonnet"),
            ("my-local-model", "my-local-model"),
        ],
    )
    def test_validate_model_name(self, model, expected):
        assert validate_model_name(model) == expected

    def test_parse_tags(self):
        assert parse_tags(" P, h1 ,li") == ["p", "h1", "li"]

    def test_parse_tags_rejects_unknown(self):
        with pytest.raises(click.BadParameter):
            parse_tags("p,table")


class TestCommand:
    """Tests for the click command."""

    def teardown_method(self):
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
            handler.close()

    def test_list_models(self, temp_dir):
        result = CliRunner().invoke(main, ["--list-models", "--log-file", os.path.join(temp_dir, "run.log")])

        assert result.exit_code == 0
        assert "gemini-flash-lite-latest" in result.output

    def test_missing_input(self, temp_dir):
        result = CliRunner().invoke(main, ["--log-file", os.path.join(temp_dir, "run.log")])

        assert result.exit_code == 1
        assert "--input" in result.output


class TestTranslateBook:
    """Tests for translation runs driven through the command."""

    def setup_method(self):
        self.pipelines = []

    def teardown_method(self):
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
            handler.close()

    def build_pipeline(self, **kwargs):
        pipeline = TranslationPipeline(analyzer=FakeStyleAnalyzer(), **kwargs)
        self.pipelines.append(pipeline)
        return pipeline

    def invoke(self, temp_dir, service, data):
        input_file = os.path.join(temp_dir, "book.epub")
        with open(input_file, "wb") as f:
            f.write(data)

        args = [
            "--input", input_file,
            "--output", os.path.join(temp_dir, "book_tr.epub"),
            "--api-key", "test-key",
            "--cooldown", "0",
            "--log-file", os.path.join(temp_dir, "run.log"),
        ]
        with patch("main.TranslationClient", lambda settings, api_key: service), \
                patch("main.TranslationPipeline", self.build_pipeline):
            return CliRunner().invoke(main, args)

    def saved_record(self, temp_dir):
        store = SqliteStore(os.path.join(temp_dir, "book_tr.epub.translator.db"))
        try:
            return CheckpointManager(store).load()
        finally:
            store.close()

    def test_successful_run(self, temp_dir, sample_epub):
        service = FakeTranslationService()

        result = self.invoke(temp_dir, service, sample_epub)

        assert result.exit_code == 0
        assert "Translation completed" in result.output
        assert os.path.exists(os.path.join(temp_dir, "book_tr.epub"))
        assert len(service.calls) == 7
        # Dropped only after the output file was written
        assert self.saved_record(temp_dir) is None

    def test_cancelled_run_keeps_record(self, temp_dir, sample_epub):
        service = FakeTranslationService(delay=0.5, on_call=lambda fragment: self.pipelines[0].cancel())

        result = self.invoke(temp_dir, service, sample_epub)

        assert result.exit_code == 130
        assert "Translation cancelled" in result.output
        assert not os.path.exists(os.path.join(temp_dir, "book_tr.epub"))
        assert self.saved_record(temp_dir) is not None

    def test_invalid_archive(self, temp_dir):
        service = FakeTranslationService()

        result = self.invoke(temp_dir, service, b"not an epub")

        assert result.exit_code == 1
        assert "Invalid EPUB" in result.output
        assert service.calls == []
        assert not os.path.exists(os.path.join(temp_dir, "book_tr.epub"))
