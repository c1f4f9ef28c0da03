import pytest

from grabber.processing.prefilter import extract_video_id, is_scrapable_url, is_youtube_url, unique


@pytest.mark.parametrize("url,expected", [
    ("https://blog.example.com/post", True),
    ("http://docs.example.org/guide/intro", True),
    ("https://github.com/org/repo", True),
    ("https://github.com/org/repo/blob/main/README.md", False),
    ("https://www.youtube.com/watch?v=dQw4w9WgXcQ", False),
    ("https://youtu.be/dQw4w9WgXcQ", False),
    ("https://x.com/alice/status/1", False),
    ("https://twitter.com/alice/status/1", False),
    ("https://example.com/paper.pdf", False),
    ("https://example.com/photo.JPG", False),
    ("ftp://example.com/file", False),
    ("not a url", False),
])
def test_is_scrapable_url(url, expected):
    assert is_scrapable_url(url) is expected


def test_lookalike_domains_are_scrapable():
    assert is_scrapable_url("https://dropbox.com/post") is True
    assert is_scrapable_url("https://www.x.com/alice") is False


def test_youtube_ids():
    assert extract_video_id("https://www.youtube.com/watch?v=dQw4w9WgXcQ&t=10") == "dQw4w9WgXcQ"
    assert extract_video_id("https://youtube.com/shorts/abcdefghijk") == "abcdefghijk"
    assert extract_video_id("https://blog.example.com") is None
    assert is_youtube_url("https://youtu.be/dQw4w9WgXcQ") is True


def test_unique_keeps_first_occurrence_order():
    assert unique(["b", "a", "b", "c", "a"]) == ["b", "a", "c"]
