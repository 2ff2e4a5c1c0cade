"""
Logging setup with a detailed log file and a clean terminal output.
"""
import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

import litellm


class ColoredFormatter(logging.Formatter):
    """Formatter that colours the level name for the terminal."""

    # ANSI colour codes
    COLORS = {
        'DEBUG': '\033[36m',      # Cyan
        'INFO': '\033[32m',       # Green
        'WARNING': '\033[33m',    # Yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[35m',   # Magenta
        'RESET': '\033[0m'
    }

    def format(self, record):
        color = self.COLORS.get(record.levelname, self.COLORS['RESET'])
        record = logging.makeLogRecord(record.__dict__)
        record.levelname = f"{color}{record.levelname}{self.COLORS['RESET']}"
        return super().format(record)


class CleanTerminalHandler(logging.Handler):
    """Handler that only prints the essential messages to the terminal."""

    # INFO messages containing one of these words reach the terminal
    IMPORTANT_KEYWORDS = (
        'started', 'completed', 'finished', 'opened', 'loaded', 'resum',
        'connection', 'style', 'translation', 'cancelled', 'documents',
        'error', 'failed'
    )

    def __init__(self, show_debug: bool = False, stream=None):
        """
        Initialize the handler.

        Args:
            show_debug: Also print DEBUG messages
            stream: Output stream (stderr by default)
        """
        super().__init__()
        self.show_debug = show_debug
        self.stream = stream
        self.last_message = ""

    def should_show(self, record: logging.LogRecord) -> bool:
        if record.levelno >= logging.WARNING:
            return True
        if record.levelno >= logging.INFO:
            message = record.getMessage().lower()
            return any(keyword in message for keyword in self.IMPORTANT_KEYWORDS)
        return self.show_debug

    def emit(self, record):
        if not self.should_show(record):
            return
        try:
            message = self.format(record)
            # Skip consecutive duplicates
            if message != self.last_message:
                print(message, file=self.stream or sys.stderr)
                self.last_message = message
        except Exception:
            self.handleError(record)


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    clean_terminal: bool = True,
    show_debug_in_terminal: bool = False
) -> None:
    """
    Configure the logging system.

    Args:
        log_level: Terminal log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path of the log file (optional)
        clean_terminal: Only show essential messages in the terminal
        show_debug_in_terminal: Show DEBUG messages in the terminal
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    file_formatter = logging.Formatter(
        fmt='%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)  # File always gets everything
        file_handler.setFormatter(file_formatter)
        root_logger.addHandler(file_handler)

    if clean_terminal:
        terminal_handler = CleanTerminalHandler(show_debug_in_terminal)
        terminal_handler.setFormatter(logging.Formatter(fmt='%(levelname)s: %(message)s'))
    else:
        terminal_handler = logging.StreamHandler(sys.stderr)
        terminal_handler.setFormatter(ColoredFormatter(
            fmt='%(asctime)s - %(levelname)s - %(message)s',
            datefmt='%H:%M:%S'
        ))

    terminal_handler.setLevel(numeric_level)
    root_logger.addHandler(terminal_handler)
    root_logger.setLevel(logging.DEBUG)

    # Quieten chatty libraries
    for name in ('urllib3', 'httpx', 'httpcore'):
        logging.getLogger(name).setLevel(logging.WARNING)

    litellm_level = logging.WARNING if numeric_level >= logging.WARNING else logging.INFO
    logging.getLogger('litellm').setLevel(litellm_level)
    logging.getLogger('LiteLLM').setLevel(litellm_level)

    if numeric_level >= logging.WARNING:
        litellm.set_verbose = False
        os.environ['LITELLM_LOG'] = 'WARNING'
    else:
        os.environ['LITELLM_LOG'] = 'INFO'

    logger = logging.getLogger(__name__)
    logger.info(f"Logging configured - level: {log_level}, file: {log_file or 'none'}")


def get_log_file_path(base_name: str = "epub_translator", log_dir: str = "logs") -> str:
    """
    Build a timestamped log file path.

    Args:
        base_name: Base file name
        log_dir: Directory of the log files (created if missing)

    Returns:
        Path of the log file
    """
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    return str(directory / f"{base_name}_{timestamp}.log")


class ProgressLogger:
    """Logger for the milestones of a translation run."""

    def __init__(self, name: str = "progress"):
        self.logger = logging.getLogger(name)

    def log_start(self, input_file: str, model: str, total_documents: int):
        self.logger.info(
            f"Translation started: {input_file} using {model} ({total_documents} documents)"
        )

    def log_document(self, path: str, node_count: int):
        self.logger.debug(f"Document {path}: {node_count} translatable nodes")

    def log_error(self, context: str, error: str):
        self.logger.error(f"{context}: {error}")

    def log_resume(self, document_index: int, node_index: int):
        self.logger.info(
            f"Resuming translation after document {document_index + 1}, node {node_index + 1}"
        )

    def log_completion(self, total_time: float, documents: int, nodes_translated: int):
        self.logger.info(
            f"Translation finished in {total_time:.1f}s: "
            f"{documents} documents, {nodes_translated} nodes translated"
        )

    def log_stats(self, stats: dict):
        self.logger.info("Final statistics:")
        for key, value in stats.items():
            if isinstance(value, dict):
                self.logger.info(f"  {key}:")
                for sub_key, sub_value in value.items():
                    self.logger.info(f"    {sub_key}: {sub_value}")
            elif isinstance(value, list):
                self.logger.info(f"  {key}: {len(value)}")
            else:
                self.logger.info(f"  {key}: {value}")


# Shared instance
progress_logger = ProgressLogger()
