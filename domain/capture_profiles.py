"""Capture budgets per profile, fidelity level and detail.

A profile trades payload size for completeness. ``light`` is the default;
``high`` detail is only requested after ``low`` failed to resolve an intent.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Any, Mapping

from domain.models import DetailLevel, FidelityLevel

DEFAULT_PROFILE = "light"

_L = FidelityLevel
_PROFILES: dict[str, dict[FidelityLevel, dict[str, dict[str, Any]]]] = {
    "light": {
        _L.STRUCTURAL: {
            "low": {"max_nodes": 220, "max_name_chars": 80, "interactive_only": True},
            "high": {"max_nodes": 320, "max_name_chars": 120, "interactive_only": False},
        },
        _L.LISTING: {
            "low": {"max_items": 120, "max_text_chars": 80, "viewport_only": True},
            "high": {"max_items": 180, "max_text_chars": 120, "viewport_only": False},
        },
        _L.QUERY: {
            "low": {"limit": 20, "max_chars": 180},
            "high": {"limit": 40, "max_chars": 400},
        },
        _L.VISUAL: {
            "low": {"max_items": 80, "max_text_chars": 60, "full_page": False},
            "high": {"max_items": 120, "max_text_chars": 100, "full_page": True},
        },
    },
    "balanced": {
        _L.STRUCTURAL: {
            "low": {"max_nodes": 440, "max_name_chars": 120, "interactive_only": True},
            "high": {"max_nodes": 700, "max_name_chars": 160, "interactive_only": False},
        },
        _L.LISTING: {
            "low": {"max_items": 240, "max_text_chars": 120, "viewport_only": False},
            "high": {"max_items": 320, "max_text_chars": 160, "viewport_only": False},
        },
        _L.QUERY: {
            "low": {"limit": 40, "max_chars": 400},
            "high": {"limit": 70, "max_chars": 700},
        },
        _L.VISUAL: {
            "low": {"max_items": 160, "max_text_chars": 100, "full_page": False},
            "high": {"max_items": 240, "max_text_chars": 140, "full_page": True},
        },
    },
    "full": {
        _L.STRUCTURAL: {
            "low": {"max_nodes": 1200, "max_name_chars": 180, "interactive_only": False},
            "high": {"max_nodes": 2000, "max_name_chars": 220, "interactive_only": False},
        },
        _L.LISTING: {
            "low": {"max_items": 500, "max_text_chars": 200, "viewport_only": False},
            "high": {"max_items": 500, "max_text_chars": 300, "viewport_only": False},
        },
        _L.QUERY: {
            "low": {"limit": 120, "max_chars": 1200},
            "high": {"limit": 200, "max_chars": 2000},
        },
        _L.VISUAL: {
            "low": {"max_items": 300, "max_text_chars": 160, "full_page": True},
            "high": {"max_items": 500, "max_text_chars": 220, "full_page": True},
        },
    },
}


def list_capture_profiles() -> list[str]:
    return list(_PROFILES)


def normalize_capture_profile(profile: str | None) -> str:
    raw = (profile or "").strip().lower()
    return raw if raw in _PROFILES else DEFAULT_PROFILE


def capture_limits(
    profile: str | None,
    level: FidelityLevel,
    detail: DetailLevel,
) -> Mapping[str, Any]:
    table = _PROFILES[normalize_capture_profile(profile)][level]
    return MappingProxyType(dict(table[detail.value]))
