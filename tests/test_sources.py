"""
Tests for the source definition loader and application settings.
"""

import logging

import pytest

from config.settings import AppSettings, USER_AGENT, base_directory, default_session_candidates
from pipelines.errors import ConfigurationError
from sources import SourceDefinition, SourceLoader


class TestBuiltInSources:

    def test_all_built_in_sources_load(self):
        sources = SourceLoader().load_all_sources()

        assert set(sources) == {"docs", "swift", "swift-book", "evolution"}
        assert sources["evolution"].kind == "evolution"
        assert sources["docs"].start_url == "https://developer.apple.com/documentation/"
        assert sources["swift-book"].max_pages == 200

    def test_every_crawl_seed_is_inside_its_prefixes(self):
        for source in SourceLoader().load_all_sources().values():
            if source.kind == "crawl":
                assert any(source.start_url.startswith(p) for p in source.allowed_prefixes), source.name

    def test_output_directories_resolve_under_data_root(self, docharbor_home):
        source = SourceLoader().load_source("swift")

        assert source.output_dir == "swift-org"
        assert source.output_directory == docharbor_home / "swift-org"

    def test_unknown_source(self):
        with pytest.raises(ConfigurationError) as excinfo:
            SourceLoader().load_source("nope")
        assert "available" in str(excinfo.value)


class TestCustomSources:

    def test_invalid_yaml(self, tmp_path):
        (tmp_path / "broken.yaml").write_text("start_url: [unclosed\n", encoding="utf-8")

        with pytest.raises(ConfigurationError):
            SourceLoader(tmp_path).load_source("broken")

    def test_non_mapping_file(self, tmp_path):
        (tmp_path / "list.yaml").write_text("- a\n- b\n", encoding="utf-8")

        with pytest.raises(ConfigurationError):
            SourceLoader(tmp_path).load_source("list")

    def test_crawl_source_needs_start_url(self, tmp_path):
        (tmp_path / "empty.yaml").write_text("kind: crawl\n", encoding="utf-8")

        with pytest.raises(ConfigurationError):
            SourceLoader(tmp_path).load_source("empty")

    def test_file_name_wins_over_name_field(self, tmp_path, caplog):
        (tmp_path / "guides.yaml").write_text(
            "name: other\nstart_url: https://example.test/guides/\n", encoding="utf-8")

        with caplog.at_level(logging.WARNING):
            source = SourceLoader(tmp_path).load_source("guides")

        assert source.name == "guides"
        assert source.display_name == "guides"
        assert "mismatch" in caplog.text

    def test_disabled_sources_are_filtered(self, tmp_path):
        (tmp_path / "on.yaml").write_text("start_url: https://example.test/a/\n", encoding="utf-8")
        (tmp_path / "off.yaml").write_text("start_url: https://example.test/b/\nenabled: false\n",
                                           encoding="utf-8")

        loader = SourceLoader(tmp_path)
        assert loader.available() == ["off", "on"]
        assert list(loader.get_enabled_sources()) == ["on"]

    def test_absolute_output_dir_is_kept(self, tmp_path):
        source = SourceDefinition(name="x", start_url="https://example.test/", output_dir=str(tmp_path / "out"))
        assert source.output_directory == tmp_path / "out"

    def test_unknown_kind(self):
        with pytest.raises(ConfigurationError):
            SourceDefinition(name="x", kind="feed")

    def test_round_trip(self):
        source = SourceDefinition(name="x", start_url="https://example.test/", allowed_prefixes=["https://example.test/"])
        assert SourceDefinition.from_dict(source.to_dict()) == source


class TestSettings:

    def test_home_override(self, docharbor_home):
        assert base_directory() == docharbor_home
        assert default_session_candidates()[0] == docharbor_home / "docs"

    def test_from_env(self, docharbor_home, monkeypatch):
        monkeypatch.setenv("GITHUB_TOKEN", "ghp_test")
        monkeypatch.delenv("DOCHARBOR_USER_AGENT", raising=False)
        monkeypatch.setenv("DOCHARBOR_LOG_LEVEL", "DEBUG")

        settings = AppSettings.from_env()

        assert settings.github_token == "ghp_test"
        assert settings.user_agent == USER_AGENT
        assert settings.log_level == "DEBUG"
        assert settings.base_directory == docharbor_home

    def test_empty_token_means_unauthenticated(self, docharbor_home, monkeypatch):
        monkeypatch.setenv("GITHUB_TOKEN", "")
        assert AppSettings.from_env().github_token is None
