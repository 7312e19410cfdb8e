"""
Title / artist cleaning ahead of MusicBrainz searches.

Streaming services decorate titles with things like "(2015 Remaster)", "feat. X" or
" - Radio Edit". Those suffixes hurt recording search, so they are cut, but only
when the suffix is mostly descriptor words, years and punctuation. A parenthetical
carrying real information ("Live in Berlin with Full Orchestra") is left alone.
"""
import re
import unicodedata
from typing import Tuple

_SYMBOLS = frozenset("1234567890!@#$%^&*()-=_+[]{};\"|;'\\<>?/.,~`")

_GUFF_WORDS = (
    "a cappella", "acoustic", "bonus", "censored", "clean", "club", "clubmix", "composition",
    "cut", "dance", "demo", "dialogue", "dirty", "edit", "excerpt", "explicit", "extended",
    "instrumental", "interlude", "intro", "karaoke", "live", "long", "main", "maxi", "megamix",
    "mix", "mono", "official", "orchestral", "original", "outro", "outtake", "outtakes", "piano",
    "quadraphonic", "radio", "rap", "re-edit", "reedit", "refix", "rehearsal", "reinterpreted",
    "released", "release", "remake", "remastered", "remaster", "master", "remix", "remixed",
    "remode", "reprise", "rework", "reworked", "rmx", "session", "short", "single", "skit",
    "stereo", "studio", "take", "takes", "tape", "track", "tryout", "uncensored", "unknown",
    "unplugged", "untitled", "version", "ver", "video", "vocal", "vs", "with", "without",
)

_YEAR_RE = re.compile(r"(20[0-9]{2}|19[0-9]{2})")

_RECORDING_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"(?P<title>.+?)\s+(?P<enclosed>\(.+\)|\[.+\]|\{.+\}|<.+>)$",
        r"(?P<title>.+?)\s+?(?P<feat>[\[(]?(?:feat(?:uring)?|ft)\b\.?)\s*?(?P<artists>.+)\s*",
        r"(?P<title>.+?)(?:\s+?[\u2010\u2012\u2013\u2014~/-])(?![^(]*\))(?P<dash>.*)",
    )
)

_ARTIST_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"(?P<title>.+?)(?:\s*?,)(?P<comma>.*)",
        r"(?P<title>.+?)(?:\s+?(?:&|with\b))(?P<dash>.*)",
    )
)

_BRACKETS = (("(", ")"), ("[", "]"), ("{", "}"), ("<", ">"))

# unicodedata character-name prefixes per supported script
_SCRIPT_PREFIXES = {
    "Latin": ("LATIN",),
    "Han": ("CJK UNIFIED IDEOGRAPH", "CJK COMPATIBILITY IDEOGRAPH"),
    "Cyrillic": ("CYRILLIC",),
    "Devanagari": ("DEVANAGARI",),
}


def is_likely_guff(text: str) -> bool:
    """True when descriptor words, years and symbols outweigh the remaining letters."""
    lowered = text.lower()
    before = len(lowered)
    for word in _GUFF_WORDS:
        lowered = lowered.replace(word, "")
    lowered = _YEAR_RE.sub("", lowered)

    guff_chars = before - len(lowered)
    letters = 0
    for ch in lowered:
        if ch in _SYMBOLS:
            guff_chars += 1
        if ch.isalpha():
            letters += 1
    return guff_chars > letters


def brackets_balanced(text: str) -> bool:
    return all(text.count(o) == text.count(c) for o, c in _BRACKETS)


class MetadataCleaner:
    def __init__(self, preferred_script: str = "Latin"):
        if preferred_script not in _SCRIPT_PREFIXES:
            raise ValueError(f"Unsupported script: {preferred_script}")
        self._prefixes = _SCRIPT_PREFIXES[preferred_script]

    def _keeps(self, ch: str) -> bool:
        if not unicodedata.category(ch).startswith("L"):
            return True  # digits, punctuation, spaces, symbols, combining marks
        return unicodedata.name(ch, "").startswith(self._prefixes)

    def drop_foreign_chars(self, text: str) -> str:
        """Strip characters of other scripts unless that would leave no letters."""
        kept = []
        has_foreign = False
        for ch in text:
            if self._keeps(ch):
                kept.append(ch)
            else:
                has_foreign = True
        cleaned = "".join(kept).strip()
        if has_foreign and cleaned and any(ch.isalpha() for ch in cleaned):
            return cleaned
        return text

    def clean_recording(self, text: str) -> Tuple[str, bool]:
        text = text.strip()
        if not brackets_balanced(text):
            return text, False

        text = self.drop_foreign_chars(text)
        changed = False
        for pattern in _RECORDING_PATTERNS:
            match = pattern.search(text)
            if match is None:
                continue
            groups = {k: (v or "").strip() for k, v in match.groupdict().items()}

            enclosed = groups.get("enclosed", "")
            if enclosed and is_likely_guff(enclosed):
                text, changed = groups["title"], True
                break
            if groups.get("feat"):
                text, changed = groups["title"], True
                break
            dash = groups.get("dash", "")
            if dash and is_likely_guff(dash):
                text, changed = groups["title"], True
                break

        return text.strip(), changed

    def clean_artist(self, text: str) -> Tuple[str, bool]:
        text = text.strip()
        if not brackets_balanced(text):
            return text, False

        text = self.drop_foreign_chars(text)
        changed = False
        for pattern in _ARTIST_PATTERNS:
            match = pattern.search(text)
            if match is None:
                continue
            title = (match.group("title") or "").strip()
            # a short leading fragment ("DJ", "A$") is probably part of the name
            if len(title) > 2 and title[0].isalpha():
                text, changed = title, True
                break

        return text.strip(), changed
