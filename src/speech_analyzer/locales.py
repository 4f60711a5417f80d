"""Locale normalization and resolution against a supported set."""

from typing import Iterable, Optional


def normalize_locale(locale: str) -> str:
    """'en_us' -> 'en-US', 'DE' -> 'de'."""
    parts = locale.strip().replace("_", "-").split("-")
    language = parts[0].lower()
    if len(parts) == 1 or not parts[1]:
        return language
    return f"{language}-{parts[1].upper()}"


def language_code(locale: str) -> str:
    return normalize_locale(locale).split("-")[0]


def resolve_locale(
    locale: str,
    supported: Iterable[str],
    installed: Iterable[str] = (),
) -> Optional[str]:
    """
    Find the supported locale equivalent to `locale`.

    An exact match wins. Otherwise a supported locale sharing the language
    code is returned, preferring installed ones. Returns None when nothing
    shares the language.
    """
    wanted = normalize_locale(locale)
    supported = [normalize_locale(s) for s in supported]
    installed = {normalize_locale(s) for s in installed}

    if wanted in supported:
        return wanted

    language = language_code(wanted)
    candidates = [s for s in supported if language_code(s) == language]
    if not candidates:
        return None
    for candidate in candidates:
        if candidate in installed:
            return candidate
    return candidates[0]
