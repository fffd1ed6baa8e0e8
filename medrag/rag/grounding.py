"""
Heuristic check for answers that admit the retrieved context was insufficient.

Plain case-insensitive substring matching against a fixed phrase list. It can
misfire both ways (an answer quoting a source that says "no information" is
flagged; a refusal phrased differently is not). Keep the list as is unless the
requirements change.
"""

UNGROUNDED_PHRASES = (
    "doesn't contain",
    "does not contain",
    "no information",
    "cannot answer",
    "can't answer",
    "unable to answer",
    "not covered in the context",
    "not found in the context",
    "not mentioned in the context",
    "not provided in the context",
    "context does not provide",
    "context doesn't provide",
    "not enough information",
    "insufficient information",
)


def is_answer_grounded(answer: str) -> bool:
    text = (answer or "").lower()
    return not any(phrase in text for phrase in UNGROUNDED_PHRASES)
