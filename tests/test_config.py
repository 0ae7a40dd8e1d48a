"""Tests for config helpers."""

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import config


class TestParseInt:
    def test_valid(self) -> None:
        assert config._parse_int("30", 10) == 30

    def test_blank_and_invalid(self) -> None:
        assert config._parse_int(None, 10) == 10
        assert config._parse_int("  ", 10) == 10
        assert config._parse_int("ten", 10) == 10
        assert config._parse_int("-5", 10) == 10

    def test_base_url_has_no_trailing_slash(self) -> None:
        assert not config.MAX_API_BASE_URL.endswith("/")
