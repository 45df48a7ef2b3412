SAFETY_PREAMBLE = (
    "Family-friendly, safe-for-work, no nudity, no violence, no sensitive content.",
    "Uplifting, wholesome, suitable for all ages.",
)


def sanitize_prompt(raw_prompt: str) -> str:
    """Prefix an image prompt with the fixed safety preamble.

    The original prompt is appended verbatim, so the output always ends with it.
    """
    return " ".join((*SAFETY_PREAMBLE, raw_prompt or ""))
