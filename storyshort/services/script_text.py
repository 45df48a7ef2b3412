from __future__ import annotations

import re

_SECTION_RE = {
    "hook": re.compile(r"(?:^|\n)\s*HOOK:\s*([\s\S]*?)(?=\n\s*BODY:|\n\s*CTA:|\s*$)", re.IGNORECASE),
    "body": re.compile(r"(?:^|\n)\s*BODY:\s*([\s\S]*?)(?=\n\s*CTA:|\s*$)", re.IGNORECASE),
    "cta": re.compile(r"(?:^|\n)\s*CTA:\s*([\s\S]*)$", re.IGNORECASE),
}

# Only sentences leading the script are inspected; narration may say "I can't".
_META_SENTENCES = [
    re.compile(
        r"^[^.!?\n]*\b(?:as an ai|ai language model|i am an? (?:ai|assistant)|i'm an? (?:ai|assistant))\b"
        r"[^.!?\n]*[.!?]?\s*",
        re.IGNORECASE,
    ),
    re.compile(
        r"^i (?:cannot|can't|am not able to|don'?t have the ability to)\b[^.!?\n]*"
        r"\b(?:request|generate|create|write|assist|provide)\b[^.!?\n]*[.!?]?\s*",
        re.IGNORECASE,
    ),
]


def _unquote(text: str) -> str:
    if len(text) >= 2 and text[0] == text[-1] == '"':
        return text[1:-1].strip()
    return text


def strip_meta(text: str) -> str:
    """Drop assistant preamble sentences from the start of a generated script."""
    out = _unquote((text or "").strip())
    changed = True
    while changed and out:
        changed = False
        for pattern in _META_SENTENCES:
            stripped = pattern.sub("", out, count=1)
            if stripped != out:
                out = stripped.lstrip()
                changed = True
    return _unquote(out.strip())


def parse_sections(raw: str | None) -> dict[str, str]:
    empty = {"hook": "", "body": "", "cta": ""}
    if not raw:
        return empty
    text = raw.replace("\r\n", "\n").strip()
    matches = {name: pattern.search(text) for name, pattern in _SECTION_RE.items()}
    if any(matches.values()):
        return {name: (match.group(1).strip() if match else "") for name, match in matches.items()}
    parts = [part.strip() for part in re.split(r"\n{2,}", text) if part.strip()]
    if len(parts) >= 3:
        return {"hook": parts[0], "body": "\n\n".join(parts[1:-1]), "cta": parts[-1]}
    if len(parts) == 2:
        return {"hook": parts[0], "body": "", "cta": parts[1]}
    if len(parts) == 1:
        return {"hook": parts[0], "body": "", "cta": ""}
    return empty


def to_plain_narration(raw: str | None) -> str:
    """Flatten a possibly HOOK/BODY/CTA labelled script into narration text."""
    sections = parse_sections(raw)
    return "\n\n".join(part for part in (sections["hook"], sections["body"], sections["cta"]) if part)


def split_sentences(text: str) -> list[str]:
    collapsed = re.sub(r"\s+", " ", text or "").strip()
    if not collapsed:
        return []
    return [part.strip() for part in re.split(r"(?<=[.!?])\s+", collapsed) if part.strip()]
