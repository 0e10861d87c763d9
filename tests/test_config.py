"""
tests/test_config.py — YAML Configuration Loader
==================================================
"""

from __future__ import annotations

import pytest

from shamba.config import CommunityConfig, load_config


class TestLoadConfig:
    def test_missing_file_yields_defaults(self, tmp_path):
        cfg = load_config(tmp_path / "nope.yaml")
        assert cfg == CommunityConfig()
        assert cfg.reaction_types == ("like", "love", "helpful", "insightful")

    def test_overrides(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "community_name: Elgon Growers\n"
            "default_page_size: 5\n"
            "trending_window_days: 14\n"
            "reaction_types: [Like, Helpful]\n"
            "reputation:\n"
            "  answer_accepted: 25\n",
            encoding="utf-8",
        )
        cfg = load_config(path)

        assert cfg.community_name == "Elgon Growers"
        assert cfg.default_page_size == 5
        assert cfg.trending_window_days == 14
        assert cfg.reaction_types == ("like", "helpful")
        assert cfg.reputation.answer_accepted == 25
        assert cfg.reputation.answer_posted == 2

    def test_env_var_path(self, tmp_path, monkeypatch):
        path = tmp_path / "custom.yaml"
        path.write_text("max_page_size: 50\n", encoding="utf-8")
        monkeypatch.setenv("SHAMBA_CONFIG", str(path))
        assert load_config().max_page_size == 50

    def test_empty_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("", encoding="utf-8")
        assert load_config(path) == CommunityConfig()

    @pytest.mark.parametrize(
        "body",
        [
            "default_page_size: 0\n",
            "trending_limit: many\n",
            "reaction_types: []\n",
            "reputation:\n  like_received: lots\n",
        ],
    )
    def test_invalid_values_raise(self, tmp_path, body):
        path = tmp_path / "config.yaml"
        path.write_text(body, encoding="utf-8")
        with pytest.raises(ValueError):
            load_config(path)


class TestClampLimit:
    def test_bounds(self):
        cfg = CommunityConfig(default_page_size=20, max_page_size=100)
        assert cfg.clamp_limit(None) == 20
        assert cfg.clamp_limit(0) == 1
        assert cfg.clamp_limit(500) == 100
        assert cfg.clamp_limit(7) == 7
