from promshard.encode import md5_hex


def test_md5_of_known_word():
    assert md5_hex(b"test") == "098f6bcd4621d373cade4e832627b4f6"


def test_md5_is_32_hex_characters():
    digest = md5_hex(b"some other content")
    assert len(digest) == 32
    assert set(digest) <= set("0123456789abcdef")


def test_md5_differs_for_different_input():
    assert md5_hex(b"a") != md5_hex(b"b")
    assert md5_hex(b"same") == md5_hex(b"same")