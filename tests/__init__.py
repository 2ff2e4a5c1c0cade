# __init__.py file for the tests directory
# This file allows Python to recognize the tests directory as a package

"""
Test suite for the EPUB Translator project.

This package contains tests for all system modules:

- test_archive.py: EPUB container read/write
- test_manifest.py: Reading order and metadata resolution
- test_extractors.py: Node extraction and fragment helpers
- test_cache.py: Key-value stores and translation cache
- test_checkpoint.py: Resume record persistence
- test_progress.py: Progress snapshots and activity log
- test_validation.py: Suspicious-translation heuristic
- test_translator.py: Settings and the LiteLLM client
- test_style.py: Style profile and analysis
- test_orchestrator.py: Concurrency, cache, cooldown, cancellation, resume
- test_pipeline.py: End-to-end runs
- test_logging_config.py: Logging configuration

To run all tests:
    pytest tests/

To run specific tests:
    pytest tests/test_orchestrator.py
"""
