import pytest

from releasewatch.dedup.similarity import (
    SimilarityScorer,
    split_words,
    trigram_similarity,
    trigrams,
    word_overlap,
)


class TestTrigrams:
    def test_padding(self):
        assert trigrams("ab") == frozenset({"  a", " ab", "ab "})

    def test_empty_key_has_no_trigrams(self):
        assert trigrams("") == frozenset()

    def test_hyphens_are_ordinary_characters(self):
        assert "y-e" in trigrams("mickey-ears")


class TestTrigramSimilarity:
    def test_identical_keys(self):
        assert trigram_similarity("mickey-ears", "mickey-ears") == 1.0

    def test_empty_keys_never_match(self):
        assert trigram_similarity("", "") == 0.0
        assert trigram_similarity("", "mickey-ears") == 0.0

    def test_symmetric(self):
        a, b = "loungefly-stitch-backpack", "stitch-loungefly-backpack"
        assert trigram_similarity(a, b) == trigram_similarity(b, a)

    def test_partial_overlap(self):
        # 11 shared trigrams out of a union of 18.
        assert trigram_similarity("mickey-ears", "mickey-ears-pink") == pytest.approx(11 / 18)

    def test_distinct_products(self):
        # Shared: "  m", " mi", "-ea", "ear", "ars", "rs ".
        assert trigram_similarity("mickey-ears", "minnie-ears") == pytest.approx(6 / 18)


class TestWordOverlap:
    def test_split_words_drops_empty_tokens(self):
        assert split_words("a--b-") == ["a", "b"]
        assert split_words("") == []

    def test_overlap_uses_shorter_list(self):
        assert word_overlap("mickey-ears", "pink-mickey-ears-headband") == 1.0

    def test_distinct_shared_words(self):
        assert word_overlap("mickey-ears", "minnie-ears") == 0.5
        assert word_overlap("pin-pin-trading", "pin-lanyard") == 0.5
        assert word_overlap("castle-popcorn-bucket", "castle-ornament") == 0.5

    def test_empty_side_scores_zero(self):
        assert word_overlap("", "mickey-ears") == 0.0


def test_scorer_delegates_to_module_functions():
    scorer = SimilarityScorer()
    assert scorer.trigram("abc", "abc") == 1.0
    assert scorer.word_overlap("a-b", "b-c") == 0.5
