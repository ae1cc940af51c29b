import pytest

from releasewatch.core.exceptions import ConstraintViolationError, MergeError
from releasewatch.core.models import ReleaseCandidate
from releasewatch.dedup.fingerprint import fingerprint
from releasewatch.dedup.normalizer import TitleNormalizer
from releasewatch.storage import ReleaseRepository


class TestDerivedFields:
    def test_create_derives_key_and_hash(self, repo):
        record = repo.create_release("Mickey's New Ears!", "https://a.example.com")
        assert record.title_normalized == "mickey-ears"
        assert record.source_product_hash == fingerprint("https://a.example.com", "mickey-ears")
        assert record.merged_into_id is None

    def test_duplicate_fingerprint_rejected_among_live_records(self, repo):
        repo.create_release("Mickey Ears", "https://a.example.com")
        with pytest.raises(ConstraintViolationError):
            repo.create_release("mickey ears!", "https://a.example.com")

    def test_fingerprint_reusable_once_merged(self, repo, add_release):
        keep = add_release("Spirit Jersey", "https://b.example.com")
        old = add_release("Mickey Ears", "https://a.example.com", minutes=1)
        repo.merge(old.id, keep.id)
        again = repo.create_release("Mickey Ears", "https://a.example.com")
        assert again.source_product_hash == old.source_product_hash

    def test_update_recomputes(self, repo):
        record = repo.create_release("Mickey Ears", "https://a.example.com")
        updated = repo.update_release(record.id, title="Minnie Ears")
        assert updated.title_normalized == "minnie-ears"
        assert updated.source_product_hash == fingerprint("https://a.example.com", "minnie-ears")

    def test_update_image_only_keeps_hash(self, repo):
        record = repo.create_release("Mickey Ears", "https://a.example.com")
        updated = repo.update_release(record.id, image_url="https://cdn.example.com/1.jpg")
        assert updated.source_product_hash == record.source_product_hash
        assert updated.image_url == "https://cdn.example.com/1.jpg"

    def test_update_conflict_merges_into_existing(self, repo, add_release):
        existing = add_release("Minnie Ears", "https://a.example.com")
        record = add_release("Mickey Ears", "https://a.example.com", minutes=1)
        updated = repo.update_release(record.id, title="Minnie Ears")
        assert updated.merged_into_id == existing.id
        assert [r.id for r in repo.list_live()] == [existing.id]

    def test_update_unknown_field(self, repo):
        record = repo.create_release("Mickey Ears")
        with pytest.raises(ValueError):
            repo.update_release(record.id, merged_into_id="x")

    def test_update_missing_record(self, repo):
        assert repo.update_release("missing", title="x") is None


class TestMerge:
    def test_self_merge_rejected(self, repo):
        record = repo.create_release("Mickey Ears")
        with pytest.raises(MergeError):
            repo.merge(record.id, record.id)

    def test_missing_record(self, repo):
        record = repo.create_release("Mickey Ears")
        with pytest.raises(MergeError):
            repo.merge(record.id, "missing")

    def test_already_merged_source_rejected(self, repo, add_release):
        a = add_release("Mickey Ears", "https://a.example.com")
        b = add_release("Minnie Ears", "https://b.example.com", minutes=1)
        c = add_release("Spirit Jersey", "https://c.example.com", minutes=2)
        repo.merge(b.id, a.id)
        with pytest.raises(MergeError):
            repo.merge(b.id, c.id)

    def test_chains_are_flattened(self, repo, add_release):
        a = add_release("Mickey Ears", "https://a.example.com")
        b = add_release("Minnie Ears", "https://b.example.com", minutes=1)
        c = add_release("Spirit Jersey", "https://c.example.com", minutes=2)
        repo.merge(b.id, c.id)
        repo.merge(c.id, a.id)
        assert repo.get_by_id(b.id).merged_into_id == a.id
        assert repo.get_by_id(c.id).merged_into_id == a.id

    def test_target_resolved_to_root(self, repo, add_release):
        a = add_release("Mickey Ears", "https://a.example.com")
        b = add_release("Minnie Ears", "https://b.example.com", minutes=1)
        c = add_release("Spirit Jersey", "https://c.example.com", minutes=2)
        repo.merge(b.id, a.id)
        merged = repo.merge(c.id, b.id)
        assert merged.merged_into_id == a.id

    def test_merge_into_own_descendant_rejected(self, repo, add_release):
        a = add_release("Mickey Ears", "https://a.example.com")
        b = add_release("Minnie Ears", "https://b.example.com", minutes=1)
        repo.merge(b.id, a.id)
        with pytest.raises(MergeError):
            repo.merge(a.id, b.id)

    def test_sources_move_and_image_fills(self, repo, source_repo, add_release):
        keep = add_release("Mickey Ears", "https://a.example.com")
        dup = add_release("Mickey Ears!", "https://b.example.com", "https://cdn.example.com/e.jpg", 1)
        source_repo.add_source(keep.id, "https://shared.example.com", "blog")
        source_repo.add_source(dup.id, "https://shared.example.com", "blog")
        source_repo.add_source(dup.id, "https://only-dup.example.com", "news")

        repo.merge(dup.id, keep.id)

        urls = sorted(s.source_url for s in source_repo.get_for_release(keep.id))
        assert urls == ["https://only-dup.example.com", "https://shared.example.com"]
        assert source_repo.get_for_release(dup.id) == []
        assert repo.get_by_id(keep.id).image_url == "https://cdn.example.com/e.jpg"


class TestBackfill:
    def test_noop_when_consistent(self, repo):
        repo.create_release("Mickey Ears")
        assert repo.backfill_derived_fields() == (0, 0)

    def test_vocabulary_change_recomputes_and_merges(self, session_factory, add_release):
        first = add_release("Mickey Ears Limited", "https://a.example.com", minutes=0)
        second = add_release("Mickey Ears", "https://a.example.com", minutes=1)
        third = add_release("Limited Spirit Jersey", "https://b.example.com", minutes=2)

        stricter = TitleNormalizer(stop_words=["limited"], brand_words=[])
        repo = ReleaseRepository(session_factory, normalizer=stricter)
        updated, merged = repo.backfill_derived_fields()

        assert (updated, merged) == (2, 1)
        assert repo.get_by_id(first.id).title_normalized == "mickey-ears"
        assert repo.get_by_id(second.id).merged_into_id == first.id
        assert repo.get_by_id(third.id).title_normalized == "spirit-jersey"
        assert {r.id for r in repo.list_live()} == {first.id, third.id}


class TestLookups:
    def test_list_match_keys_order(self, repo, add_release):
        late = add_release("Mickey Ears", "https://a.example.com", minutes=5)
        early = add_release("Spirit Jersey", "https://b.example.com", minutes=1)
        assert repo.list_match_keys() == [(early.id, "spirit-jersey"), (late.id, "mickey-ears")]

    def test_fill_missing_image_only_once(self, repo):
        record = repo.create_release("Mickey Ears")
        assert repo.fill_missing_image(record.id, "https://cdn.example.com/1.jpg")
        assert not repo.fill_missing_image(record.id, "https://cdn.example.com/2.jpg")
        assert repo.get_by_id(record.id).image_url == "https://cdn.example.com/1.jpg"


class TestCandidateWrites:
    candidate = ReleaseCandidate(
        title="Figment Popcorn Bucket",
        source_url="https://feed.example.com/2",
        source_name="feed",
        article_title="Figment bucket returns",
    )

    def test_insert_candidate_stores_release_and_source(self, repo, source_repo):
        record = repo.insert_candidate(self.candidate)
        assert record.title_normalized == "figment-popcorn-bucket"
        assert record.source_product_hash == fingerprint(
            "https://feed.example.com/2", "figment-popcorn-bucket",
        )
        [source] = source_repo.get_for_release(record.id)
        assert (source.source_name, source.article_title) == ("feed", "Figment bucket returns")

    def test_insert_candidate_conflict_writes_nothing(self, repo, source_repo):
        first = repo.insert_candidate(self.candidate)
        with pytest.raises(ConstraintViolationError):
            repo.insert_candidate(self.candidate.model_copy(update={"source_name": "mirror"}))
        assert [r.id for r in repo.list_live()] == [first.id]
        assert [s.source_name for s in source_repo.get_for_release(first.id)] == ["feed"]

    def test_attach_candidate_keeps_existing_names(self, repo, source_repo):
        record = repo.insert_candidate(self.candidate)
        filled = repo.attach_candidate(
            record.id,
            self.candidate.model_copy(update={"source_name": "", "article_title": ""}),
            "https://cdn.example.com/figment.jpg",
        )
        assert filled
        [source] = source_repo.get_for_release(record.id)
        assert source.source_name == "feed"
        assert repo.get_by_id(record.id).image_url == "https://cdn.example.com/figment.jpg"

    def test_attach_candidate_without_image(self, repo):
        record = repo.insert_candidate(self.candidate)
        assert not repo.attach_candidate(record.id, self.candidate, None)
        assert repo.get_by_id(record.id).image_url is None
