import pytest

from dual_subtitles.metadata import parse_stremio_id


@pytest.mark.parametrize(
    "raw",
    ["tt0369179:1:2", "tt0369179%3A1%3A2", "tt0369179%253A1%253A2"],
)
def test_parse_stremio_id_episode_variants(raw):
    sid = parse_stremio_id(raw)
    assert sid.base == "tt0369179"
    assert sid.season == 1
    assert sid.episode == 2
    assert sid.is_imdb and sid.is_episode


def test_parse_stremio_id_movie():
    sid = parse_stremio_id("tt0111161")
    assert sid.base == "tt0111161"
    assert sid.season is None and sid.episode is None
    assert not sid.is_episode


def test_parse_stremio_id_incomplete_or_foreign():
    assert parse_stremio_id("tt0369179:1").season is None
    assert parse_stremio_id("tt0369179:x:2").episode is None
    assert not parse_stremio_id("kitsu:123").is_imdb
    assert parse_stremio_id("").base == ""
