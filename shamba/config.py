"""
shamba.config — YAML Configuration Loader
==========================================

Infrastructure secrets (``DATABASE_URL``, ``JWT_SECRET``) come from the
environment.  This module reads ``config.yaml`` for **community tuning**
only: page sizes, trending window, the allowed reaction set and the
reputation points awarded for contributions.

Usage::

    from shamba.config import load_config

    cfg = load_config()              # reads ./config.yaml by default
    print(cfg.community_name)        # "Shamba Community"
    print(cfg.reaction_types)        # ("like", "love", "helpful", "insightful")
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config.yaml"


# ---------------------------------------------------------------------------
# Typed settings objects
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ReputationPoints:
    """Points credited to a member's reputation per contribution."""

    answer_posted: int = 2
    answer_accepted: int = 15
    like_received: int = 1


@dataclass(frozen=True, slots=True)
class CommunityConfig:
    """Immutable configuration loaded from ``config.yaml``.

    Every field has a default so a missing file yields a usable config.
    """

    community_name: str = "Shamba Community"

    # Listing
    default_page_size: int = 20
    max_page_size: int = 100
    upcoming_events_limit: int = 10

    # Taxonomy
    trending_window_days: int = 7
    trending_limit: int = 10
    popular_tags_limit: int = 20

    # Engagement
    reaction_types: tuple[str, ...] = ("like", "love", "helpful", "insightful")
    reputation: ReputationPoints = field(default_factory=ReputationPoints)

    def clamp_limit(self, limit: int | None) -> int:
        """Bound a caller-supplied page size to ``[1, max_page_size]``."""
        if limit is None:
            return self.default_page_size
        return max(1, min(int(limit), self.max_page_size))


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------
def _positive_int(raw: dict, key: str, default: int) -> int:
    value = raw.get(key, default)
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"config key {key!r} must be an integer, got {value!r}") from None
    if number < 1:
        raise ValueError(f"config key {key!r} must be >= 1, got {number}")
    return number


def _reaction_types(raw: dict) -> tuple[str, ...]:
    values = raw.get("reaction_types")
    if values is None:
        return CommunityConfig().reaction_types
    if not isinstance(values, list) or not values:
        raise ValueError("config key 'reaction_types' must be a non-empty list")
    return tuple(str(v).strip().lower() for v in values)


def _reputation(raw: dict) -> ReputationPoints:
    section = raw.get("reputation") or {}
    defaults = ReputationPoints()
    try:
        return ReputationPoints(
            answer_posted=int(section.get("answer_posted", defaults.answer_posted)),
            answer_accepted=int(section.get("answer_accepted", defaults.answer_accepted)),
            like_received=int(section.get("like_received", defaults.like_received)),
        )
    except (TypeError, ValueError):
        raise ValueError(f"invalid reputation section: {section!r}") from None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path | None = None) -> CommunityConfig:
    """Read *path* and return a :class:`CommunityConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.  Defaults to the
        ``SHAMBA_CONFIG`` env var, then ``config.yaml`` in the working
        directory.

    A missing file is not an error: defaults are returned.

    Raises
    ------
    ValueError
        If a key is present but holds an invalid value.
    """
    config_path = Path(path or os.getenv("SHAMBA_CONFIG", DEFAULT_CONFIG_PATH))
    if not config_path.exists():
        logger.info("No config file at %s — using defaults.", config_path)
        return CommunityConfig()

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    defaults = CommunityConfig()
    return CommunityConfig(
        community_name=str(raw.get("community_name", defaults.community_name)),
        default_page_size=_positive_int(raw, "default_page_size", defaults.default_page_size),
        max_page_size=_positive_int(raw, "max_page_size", defaults.max_page_size),
        upcoming_events_limit=_positive_int(
            raw, "upcoming_events_limit", defaults.upcoming_events_limit
        ),
        trending_window_days=_positive_int(
            raw, "trending_window_days", defaults.trending_window_days
        ),
        trending_limit=_positive_int(raw, "trending_limit", defaults.trending_limit),
        popular_tags_limit=_positive_int(raw, "popular_tags_limit", defaults.popular_tags_limit),
        reaction_types=_reaction_types(raw),
        reputation=_reputation(raw),
    )
