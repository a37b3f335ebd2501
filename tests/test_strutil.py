from promshard.strutil import find_string, find_string_vague


def test_find_string():
    assert find_string("1", "1", "2") is True
    assert find_string("3", "1", "2") is False


def test_find_string_without_candidates():
    assert find_string("1") is False


def test_find_string_vague():
    assert find_string_vague("1", "1", "2") is True
    assert find_string_vague("1", "11", "22") is True
    assert (
        find_string_vague(
            "/api/v1/shard/runtimeinfo", "/api/v1/shard/runtimeinfo/", "22"
        )
        is True
    )
    assert find_string_vague("3", "1", "2") is False