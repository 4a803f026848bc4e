import pytest

from packrat.search.types import Protocol, RawResult, SearchCriteria, SearchType


def test_tv_criteria_carry_ids_in_canonical_order():
    criteria = SearchCriteria.tv("The Show", tvdb_id=121361, imdb_id="tt0944947", season=1, episode=2)

    assert criteria.search_type == SearchType.TV
    assert criteria.provided_ids() == ["imdbId", "tvdbId"]
    assert criteria.id_value("TVDBID") == "121361"
    assert criteria.id_value("tmdbId") is None


@pytest.mark.parametrize(
    "build, message",
    [
        (lambda: SearchCriteria.movie("Film", season=1), "season/episode are only valid on tv searches"),
        (lambda: SearchCriteria.tv("Show", episode=3), "episode requires season"),
        (lambda: SearchCriteria.movie("Film", tvdb_id=1), "tvdb_id is not valid on movie searches"),
        (lambda: SearchCriteria.basic("anything", imdb_id="tt1"), "imdb_id is not valid on basic searches"),
    ],
)
def test_invalid_criteria_are_refused(build, message):
    with pytest.raises(ValueError, match=message):
        build()


def test_with_helpers_return_new_criteria():
    base = SearchCriteria.tv("Show", tmdb_id=1399)

    season = base.with_season(2)
    narrowed = season.with_categories([5030, 5040])

    assert base.season is None
    assert (season.season, season.episode) == (2, None)
    assert narrowed.categories == (5030, 5040)


def test_raw_result_identity_prefers_info_hash():
    hashed = RawResult(title="A", index_id="one", index_name="One", protocol=Protocol.TORRENT, info_hash="ABCDEF")
    by_guid = RawResult(title="A", index_id="one", index_name="One", protocol=Protocol.TORRENT, guid="g-1")
    by_title = RawResult(title="A", index_id="two", index_name="Two", protocol=Protocol.USENET)

    assert hashed.identity == "hash:abcdef"
    assert by_guid.identity == "one:g-1"
    assert by_title.identity == "two:A"
