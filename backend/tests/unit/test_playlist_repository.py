"""
Unit tests for PlaylistRepository against a migrated in-memory database.
"""
import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from domain import Channel, ParsedPlaylist, PlaylistCredentials
from errors import ConflictError, InvalidInputError, NotFoundError
from tests.fixtures.factories import create_playlist, make_channel, make_channels, make_playlist


def _count(database, table: str, playlist_id: str = None) -> int:
    sql = f"SELECT COUNT(*) FROM {table}"
    params = {}
    if playlist_id is not None:
        column = "playlist_id" if table == "channels" else "id"
        sql += f" WHERE {column} = :pid"
        params["pid"] = playlist_id
    with database.engine.connect() as conn:
        return conn.execute(text(sql), params).scalar()


class TestCreateAndRead:
    def test_create_then_get_by_id(self, playlist_repository):
        playlist = make_playlist(credentials=PlaylistCredentials("alice", "pw"))
        playlist_repository.create(playlist)

        stored = playlist_repository.get_by_id(playlist.id)
        assert stored.name == playlist.name
        assert stored.url == playlist.url
        assert stored.credentials == PlaylistCredentials("alice", "pw")
        assert stored.channels == playlist.channels
        assert stored.channel_count == 3
        assert stored.version == 1

    def test_get_by_id_missing_returns_none(self, playlist_repository):
        assert playlist_repository.get_by_id("nope") is None

    def test_get_all_keeps_channel_order(self, playlist_repository):
        first = create_playlist(playlist_repository, channels=make_channels(4))
        second = create_playlist(playlist_repository, channels=make_channels(2))

        playlists = {p.id: p for p in playlist_repository.get_all()}
        assert set(playlists) == {first.id, second.id}
        assert playlists[first.id].channels == first.channels
        assert playlists[second.id].channels == second.channels

    def test_get_channels(self, playlist_repository):
        playlist = create_playlist(playlist_repository)
        assert playlist_repository.get_channels(playlist.id) == playlist.channels

    def test_channel_row_ids_are_not_identities(self, playlist_repository, database):
        playlist = create_playlist(playlist_repository, channels=[make_channel(tvg_id="bbc1.uk")])
        with database.engine.connect() as conn:
            row_id = conn.execute(
                text("SELECT id FROM channels WHERE playlist_id = :pid"), {"pid": playlist.id}
            ).scalar()
        assert row_id != "bbc1.uk"

    def test_channel_count_defaults_to_items(self, playlist_repository):
        playlist = make_playlist(channels=make_channels(5))
        playlist.channel_count = None
        playlist_repository.create(playlist)
        assert playlist_repository.get_by_id(playlist.id).channel_count == 5

    def test_failed_channel_insert_leaves_nothing(self, playlist_repository, database):
        broken = Channel(name=None, url="http://stream/broken")
        playlist = make_playlist(channels=[make_channel(), broken, make_channel()])

        with pytest.raises(IntegrityError):
            playlist_repository.create(playlist)

        assert playlist_repository.get_by_id(playlist.id) is None
        assert _count(database, "playlists") == 0
        assert _count(database, "channels") == 0


class TestUpdate:
    def test_merges_metadata(self, playlist_repository):
        playlist = create_playlist(playlist_repository, name="Old")
        updated = playlist_repository.update(playlist.id, {"name": "New"})

        assert updated.name == "New"
        assert updated.url == playlist.url
        assert updated.channels == playlist.channels
        assert updated.version == 2
        assert updated.updated_at >= playlist.updated_at

    def test_parsed_data_replaces_all_channels(self, playlist_repository, database):
        playlist = create_playlist(playlist_repository, channels=make_channels(3))
        replacement = make_channels(5)

        updated = playlist_repository.update(playlist.id, {"parsed_data": ParsedPlaylist(items=replacement)})

        assert updated.channels == replacement
        assert updated.channel_count == 5
        assert _count(database, "channels", playlist.id) == 5

    def test_credentials_can_be_cleared(self, playlist_repository):
        playlist = create_playlist(playlist_repository, credentials=PlaylistCredentials("a", "b"))
        updated = playlist_repository.update(playlist.id, {"credentials": None})
        assert updated.credentials is None

    def test_missing_playlist(self, playlist_repository):
        with pytest.raises(NotFoundError):
            playlist_repository.update("nope", {"name": "x"})

    def test_unknown_field(self, playlist_repository):
        playlist = create_playlist(playlist_repository)
        with pytest.raises(InvalidInputError, match="bogus"):
            playlist_repository.update(playlist.id, {"bogus": 1})

    def test_expected_version_match(self, playlist_repository):
        playlist = create_playlist(playlist_repository)
        updated = playlist_repository.update(playlist.id, {"name": "A"}, expected_version=1)
        assert updated.version == 2

    def test_stale_version_conflicts_and_changes_nothing(self, playlist_repository):
        playlist = create_playlist(playlist_repository, name="Original")
        playlist_repository.update(playlist.id, {"name": "First writer"}, expected_version=1)

        with pytest.raises(ConflictError) as exc_info:
            playlist_repository.update(
                playlist.id,
                {"name": "Second writer", "parsed_data": ParsedPlaylist(items=make_channels(1))},
                expected_version=1,
            )

        assert exc_info.value.expected == 1
        assert exc_info.value.actual == 2
        stored = playlist_repository.get_by_id(playlist.id)
        assert stored.name == "First writer"
        assert stored.channels == playlist.channels

    def test_failed_channel_replace_keeps_old_channels(self, playlist_repository):
        playlist = create_playlist(playlist_repository, channels=make_channels(3))
        broken = ParsedPlaylist(items=[make_channel(), Channel(name=None, url="http://x")])

        with pytest.raises(IntegrityError):
            playlist_repository.update(playlist.id, {"parsed_data": broken})

        stored = playlist_repository.get_by_id(playlist.id)
        assert stored.channels == playlist.channels
        assert stored.version == 1


class TestDelete:
    def test_delete_cascades_to_channels(self, playlist_repository, database):
        playlist = create_playlist(playlist_repository, channels=make_channels(4))
        other = create_playlist(playlist_repository, channels=make_channels(2))

        playlist_repository.delete(playlist.id)

        assert playlist_repository.get_by_id(playlist.id) is None
        assert _count(database, "channels", playlist.id) == 0
        assert _count(database, "channels", other.id) == 2

    def test_delete_missing_raises(self, playlist_repository):
        with pytest.raises(NotFoundError):
            playlist_repository.delete("nope")

    def test_clear(self, playlist_repository, database):
        create_playlist(playlist_repository)
        create_playlist(playlist_repository)
        playlist_repository.clear()
        assert playlist_repository.get_all() == []
        assert _count(database, "channels") == 0
