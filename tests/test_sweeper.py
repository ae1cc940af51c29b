from releasewatch.dedup.sweeper import CROSS_SOURCE, SAME_SOURCE, DuplicateSweeper


def _seed(add_release):
    return {
        "headband": add_release("Mickey Pink Ears Headband", "https://blog.example.com/x", minutes=0),
        "ears": add_release("Pink Mickey Ears", "https://blog.example.com/x", minutes=1),
        "mansion": add_release("Haunted Mansion Loungefly Backpack", "https://a.example.com", minutes=2),
        "mansion_b": add_release("Loungefly Haunted Mansion Backpack", "https://b.example.com", minutes=3),
        "figment": add_release("Figment Popcorn Bucket", "https://c.example.com", minutes=4),
    }


def test_plan_groups_and_keeps_earliest(repo, lock_manager, settings, add_release):
    seeded = _seed(add_release)
    sweeper = DuplicateSweeper(repo, lock_manager, settings=settings)

    groups = sweeper.plan()

    assert [(g.keep.id, [d.id for d in g.duplicates], g.reason) for g in groups] == [
        (seeded["headband"].id, [seeded["ears"].id], SAME_SOURCE),
        (seeded["mansion"].id, [seeded["mansion_b"].id], CROSS_SOURCE),
    ]


def test_dry_run_changes_nothing(repo, lock_manager, settings, add_release):
    _seed(add_release)
    result = DuplicateSweeper(repo, lock_manager, settings=settings).sweep()
    assert result.dry_run
    assert result.duplicate_count == 2
    assert result.merged == 0
    assert len(repo.list_live()) == 5


def test_live_sweep_merges(repo, lock_manager, settings, add_release):
    seeded = _seed(add_release)
    result = DuplicateSweeper(repo, lock_manager, settings=settings).sweep(dry_run=False)

    assert result.merged == 2
    assert result.errors == []
    assert {r.id for r in repo.list_live()} == {
        seeded["headband"].id, seeded["mansion"].id, seeded["figment"].id,
    }
    assert repo.get_by_id(seeded["ears"].id).merged_into_id == seeded["headband"].id
    assert lock_manager.status() is None


def test_live_sweep_skipped_when_lock_held(repo, lock_manager, settings, add_release):
    _seed(add_release)
    lock_manager.acquire(holder="ingestion")
    result = DuplicateSweeper(repo, lock_manager, settings=settings).sweep(dry_run=False)
    assert not result.acquired
    assert result.merged == 0
    assert len(repo.list_live()) == 5


def test_cross_source_threshold_is_stricter(repo, lock_manager, settings, add_release):
    # 3 of 4 words shared: enough within one source, not across sources.
    add_release("Mickey Ears Pink Headband", "https://a.example.com", minutes=0)
    add_release("Mickey Ears Pink Bow", "https://b.example.com", minutes=1)
    assert DuplicateSweeper(repo, lock_manager, settings=settings).plan() == []
