"""
Tests for logging setup and seed-phrase redaction (logging_config.py).
"""

from __future__ import annotations

import json
import logging

import pytest

from lumina_core.identity import get_wordlist
from lumina_core.logging_config import (
    REDACTED,
    SecretRedactionFilter,
    _HumanFormatter,
    _JSONFormatter,
    contains_seed_phrase,
    setup_logging,
    shutdown_logging,
)

PHRASE = " ".join(get_wordlist()[:12])


@pytest.fixture
def root_logging():
    """Detach the current root handlers and restore them afterwards."""
    root = logging.getLogger()
    saved_handlers = list(root.handlers)
    saved_level = root.level
    for h in saved_handlers:
        root.removeHandler(h)
    yield root
    shutdown_logging()
    for h in saved_handlers:
        root.addHandler(h)
    root.setLevel(saved_level)


def _record(msg, *args):
    return logging.LogRecord("lumina_test", logging.INFO, __file__, 1, msg, args, None)


class TestDetection:
    def test_full_phrase(self):
        assert contains_seed_phrase(PHRASE)

    def test_phrase_embedded_in_text(self):
        assert contains_seed_phrase(f"Recovered wallet from {PHRASE.upper()}!")

    def test_eleven_words_is_not_a_phrase(self):
        assert not contains_seed_phrase(" ".join(get_wordlist()[:11]))

    def test_run_broken_by_non_word(self):
        words = get_wordlist()[:12]
        broken = " ".join(words[:6]) + " 42 " + " ".join(words[6:])
        assert not contains_seed_phrase(broken)

    def test_ordinary_message(self):
        assert not contains_seed_phrase("Sync started: local height 0, remote height 250")


class TestFilter:
    def test_redacts_message(self):
        record = _record("Seed: %s", PHRASE)
        assert SecretRedactionFilter().filter(record) is True
        assert record.getMessage() == REDACTED

    def test_passes_other_messages(self):
        record = _record("Transfer %s queued", "abc")
        SecretRedactionFilter().filter(record)
        assert record.getMessage() == "Transfer abc queued"


class TestFormatters:
    def test_json_formatter(self):
        out = json.loads(_JSONFormatter().format(_record("hello %s", "world")))
        assert out["msg"] == "hello world"
        assert out["level"] == "INFO"
        assert out["logger"] == "lumina_test"

    def test_human_formatter(self):
        line = _HumanFormatter().format(_record("hello"))
        assert "lumina_test: hello" in line
        assert "[INFO   ]" in line


class TestSetup:
    def test_handlers_installed(self, root_logging, tmp_path):
        setup_logging("DEBUG", "json", str(tmp_path / "logs" / "lumina.log"))
        assert root_logging.level == logging.DEBUG
        assert len(root_logging.handlers) == 2
        assert all(
            any(isinstance(f, SecretRedactionFilter) for f in h.filters)
            for h in root_logging.handlers
        )

    def test_setup_twice_does_not_duplicate(self, root_logging):
        setup_logging()
        setup_logging()
        assert len(root_logging.handlers) == 1

    def test_seed_never_reaches_file(self, root_logging, tmp_path):
        log_file = tmp_path / "lumina.log"
        setup_logging("INFO", "human", str(log_file))
        logging.getLogger("lumina_test").info(f"Seed phrase is {PHRASE}")
        logging.getLogger("lumina_test").info("Wallet ready")
        shutdown_logging()

        lines = [json.loads(line) for line in log_file.read_text().splitlines()]
        assert [entry["msg"] for entry in lines] == [REDACTED, "Wallet ready"]
        assert "abandon" not in log_file.read_text()

    def test_shutdown_removes_handlers(self, root_logging):
        setup_logging()
        shutdown_logging()
        assert root_logging.handlers == []
