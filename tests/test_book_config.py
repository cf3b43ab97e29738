"""
Tests for per-book configuration loading.
"""

import json

import pytest

from book_config import DEFAULT_CONFIG, BookConfig, load_config


def write_config(tmp_path, payload):
    path = tmp_path / "config.json"
    path.write_text(payload if isinstance(payload, str) else json.dumps(payload), encoding="utf-8")
    return path


class TestLoadConfig:
    """Test loading and merging config.json."""

    def test_defaults(self):
        """No path gives the default configuration."""
        config = load_config()

        assert config.chapter_names == []
        assert config.chapter_patterns == DEFAULT_CONFIG["chapterPatterns"]
        assert (config.min_words, config.max_words) == (5, 15)
        assert config.assembly_mode == "auto"
        assert config.metadata.title is None

    def test_merges_over_defaults(self, tmp_path):
        """Given keys override; the rest keep their defaults."""
        path = write_config(tmp_path, {
            "chapterNames": ["The Long Road Home", "Second Journey"],
            "metadata": {"title": "Road Stories"},
            "maxWords": 40,
        })
        config = load_config(path)

        assert config.chapter_names == ["The Long Road Home", "Second Journey"]
        assert config.has_chapter_names
        assert config.metadata.title == "Road Stories"
        assert config.metadata.author is None
        assert config.max_words == 40
        assert config.exclude_patterns == DEFAULT_CONFIG["excludePatterns"]

    def test_unknown_keys_ignored(self, tmp_path):
        """Legacy keys load without error and are not kept."""
        config = load_config(write_config(tmp_path, {"chapterNumbering": "sequential", "minWords": 6}))

        assert config.min_words == 6
        assert not hasattr(config, "chapter_numbering")

    def test_defaults_not_mutated(self, tmp_path):
        """Loading a config leaves the module defaults untouched."""
        load_config(write_config(tmp_path, {"metadata": {"author": "Someone"}}))
        assert DEFAULT_CONFIG["metadata"]["author"] is None

    def test_missing_file(self, tmp_path):
        """A named config that does not exist is an error."""
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.json")

    def test_malformed_json(self, tmp_path):
        """Unparseable JSON is rejected."""
        with pytest.raises(ValueError, match="Malformed"):
            load_config(write_config(tmp_path, "{not json"))

    def test_non_object(self, tmp_path):
        """A JSON list is not a config."""
        with pytest.raises(ValueError, match="JSON object"):
            load_config(write_config(tmp_path, ["a", "b"]))


class TestValidation:
    """Test value validation."""

    def test_invalid_regex(self):
        """Bad chapter patterns are reported with their key."""
        with pytest.raises(ValueError, match="chapterPatterns"):
            BookConfig.from_dict({"chapterPatterns": ["(unclosed"]})

    def test_invalid_assembly_mode(self):
        with pytest.raises(ValueError, match="assemblyMode"):
            BookConfig.from_dict({"assemblyMode": "random"})

    def test_invalid_backend(self):
        with pytest.raises(ValueError, match="backend"):
            BookConfig.from_dict({"backend": "ghostscript"})

    def test_invalid_word_bounds(self):
        """max_words below min_words is rejected."""
        with pytest.raises(ValueError, match="word bounds"):
            BookConfig.from_dict({"minWords": 20, "maxWords": 10})
        with pytest.raises(ValueError):
            BookConfig(min_words=0)


class TestPatterns:
    """Test heading and exclude pattern matching."""

    def test_heading_patterns_ignore_case(self):
        """Default patterns match numbered, named and keyword headings."""
        config = BookConfig()

        assert config.matches_heading_pattern("Chapter 3")
        assert config.matches_heading_pattern("CHAPTER ONE")
        assert config.matches_heading_pattern("1. The Long Road Home")
        assert config.matches_heading_pattern("Epilogue")
        assert not config.matches_heading_pattern("It was a dark and stormy night, and the rain fell.")

    def test_exclude_patterns(self):
        """Back-matter headings are excluded."""
        config = BookConfig()

        assert config.matches_exclude_pattern("Bibliography")
        assert config.matches_exclude_pattern("ABOUT THE AUTHOR")
        assert not config.matches_exclude_pattern("The Long Road Home")

    def test_no_exclude_patterns(self):
        """An empty exclude list excludes nothing."""
        config = BookConfig(exclude_patterns=[])
        assert not config.matches_exclude_pattern("Index")
