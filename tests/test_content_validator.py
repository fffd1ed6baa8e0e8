from conftest import make_chunk

from medrag.models import Chunk, ChunkMetadata
from medrag.utils.config_loader import ValidationConfig
from medrag.utils.content_validator import ContentValidator, DuplicateDetector

KEYWORDS = ["menopause", "hormone", "estrogen"]

LONG_MEDICAL = (
    "Menopause is diagnosed after 12 months without a menstrual period. Hormone therapy "
    "can relieve hot flashes and night sweats for many women in midlife."
)


def test_clean_chunk_scores_full_marks():
    v = ContentValidator(KEYWORDS)
    result = v.validate(make_chunk(LONG_MEDICAL))
    assert result.is_valid
    assert result.score == 100
    assert result.issues == []


def test_all_penalties_sum_below_zero():
    v = ContentValidator(KEYWORDS)
    chunk = Chunk(content="x" * 50, metadata=ChunkMetadata())
    result = v.validate(chunk)
    assert result.score == 100 - 30 - 40 - 20 - 20
    assert result.score == -10
    assert not result.is_valid
    assert len(result.issues) == 4


def test_short_boilerplate_is_rejected():
    v = ContentValidator(KEYWORDS)
    result = v.validate(make_chunk("We use cookies. Read our privacy policy about menopause."))
    assert result.score == 100 - 30 - 50
    assert not result.is_valid
    assert "Appears to be navigation/boilerplate content" in result.issues


def test_boilerplate_words_in_long_text_are_not_penalised():
    v = ContentValidator(KEYWORDS)
    text = LONG_MEDICAL * 4 + " Follow us on social media."
    assert len(text) >= 500
    result = v.validate(make_chunk(text))
    assert result.score == 100


def test_threshold_is_inclusive():
    v = ContentValidator(KEYWORDS)
    # Long, no keyword, no organization: 100 - 40 - 20 = 40 -> invalid
    no_kw = make_chunk("a" * 150, organization="")
    assert v.validate(no_kw).score == 40
    assert not v.validate(no_kw).is_valid
    # Short only: 100 - 30 = 70 -> valid
    assert v.validate(make_chunk("estrogen levels fall")).is_valid
    # Exactly at the minimum score is valid
    lenient = ContentValidator(KEYWORDS, ValidationConfig(min_score=40))
    assert lenient.validate(no_kw).is_valid


def test_validate_is_pure():
    v = ContentValidator(KEYWORDS)
    chunk = make_chunk("cookies", organization="")
    first = v.validate(chunk)
    second = v.validate(chunk)
    assert first == second


def test_filter_valid_documents_keeps_order():
    v = ContentValidator(KEYWORDS)
    good_a = make_chunk(LONG_MEDICAL, source="https://a")
    bad = make_chunk("x" * 10, organization="", source="")
    good_b = make_chunk(LONG_MEDICAL + " Estrogen.", source="https://b")
    assert v.filter_valid_documents([good_a, bad, good_b]) == [good_a, good_b]


def test_remove_duplicates_uses_first_200_chars():
    prefix = "p" * 200
    a = make_chunk(prefix + " first tail")
    b = make_chunk(prefix + " second tail")
    c = make_chunk("something else entirely")
    out = DuplicateDetector().remove_duplicates([a, b, c])
    assert out == [a, c]


def test_fingerprint_ignores_surrounding_whitespace():
    assert DuplicateDetector.fingerprint("  hello world") == DuplicateDetector.fingerprint("hello world  ")


def test_remove_duplicates_properties():
    chunks = [make_chunk(f"chunk {i % 3} " + "z" * 50) for i in range(10)]
    out = DuplicateDetector().remove_duplicates(chunks)
    assert len(out) <= len(chunks)
    prints = [DuplicateDetector.fingerprint(c.content) for c in out]
    assert len(prints) == len(set(prints))
    assert len(out) == 3


def test_remove_duplicates_empty():
    assert DuplicateDetector().remove_duplicates([]) == []
