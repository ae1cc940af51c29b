from releasewatch.dedup.fingerprint import fingerprint


def test_known_digests():
    assert fingerprint(None, "mickey-ears") == "fe28b502f11267ac0c3f1dd52f561292"
    assert fingerprint("https://example.com/a", "mickey-ears") == "8e9f2451efec6c96ecd28ca688671dbd"
    assert fingerprint(None, "") == "4501c091b0366d76ea3218b6cfdd8097"


def test_missing_url_hashes_like_empty_url():
    assert fingerprint(None, "mickey-ears") == fingerprint("", "mickey-ears")


def test_url_is_not_canonicalized():
    assert fingerprint("https://example.com/a", "mug") != fingerprint("https://example.com/a/", "mug")
    assert fingerprint("https://example.com/a", "mug") != fingerprint(" https://example.com/a", "mug")


def test_fingerprint_is_stable_hex():
    first = fingerprint("https://blog.example.com/post", "stitch-backpack")
    assert first == fingerprint("https://blog.example.com/post", "stitch-backpack")
    assert len(first) == 32
    assert int(first, 16) >= 0
