"""
Integration tests for PlaylistStore: the full ingestion pipeline against a
real in-memory database with HTTP mocked by respx.
"""
from unittest.mock import AsyncMock, patch

import httpx
import pytest
import respx
from sqlalchemy import text

from domain import CreatePlaylistInput, ParsedPlaylist, PlaylistCredentials, UpdatePlaylistInput
from errors import (
    AuthenticationError,
    ConflictError,
    DuplicatePlaylistError,
    InvalidInputError,
    NetworkError,
    NoChannelsFoundError,
    NotFoundError,
    PlaylistValidationError,
)
from playlist_service import IngestionStage
from stores import generate_playlist_id, sanitize_playlist_name
from tests.fixtures.factories import m3u_text

URL = "https://x/y.m3u"
OTHER_URL = "https://x/other.m3u"

THREE_CHANNELS_SHARED_TVG_ID = m3u_text(
    ('tvg-id="news.tv" group-title="News"', "News", "http://s/news"),
    ('tvg-id="news.tv" group-title="News"', "News HD", "http://s/news-hd"),
    ('group-title="Local"', "Local", "http://s/local"),
)

TWO_CHANNELS = m3u_text(
    ('tvg-id="a"', "A", "http://s/a"),
    ('tvg-id="b"', "B", "http://s/b"),
)


def _channel_rows(database, playlist_id: str) -> int:
    with database.engine.connect() as conn:
        return conn.execute(
            text("SELECT COUNT(*) FROM channels WHERE playlist_id = :pid"), {"pid": playlist_id}
        ).scalar()


async def _add(playlist_store, url=URL, body=THREE_CHANNELS_SHARED_TVG_ID, name="My TV"):
    with respx.mock:
        respx.get(url).mock(return_value=httpx.Response(200, text=body))
        return await playlist_store.add_playlist(CreatePlaylistInput(name=name, url=url))


class TestHelpers:
    def test_generate_playlist_id_format(self):
        playlist_id = generate_playlist_id()
        prefix, millis, suffix = playlist_id.split("-")
        assert prefix == "playlist"
        assert millis.isdigit()
        assert len(suffix) == 7
        assert generate_playlist_id() != playlist_id

    def test_sanitize_playlist_name(self):
        assert sanitize_playlist_name("  My TV  ") == "My TV"
        assert len(sanitize_playlist_name("x" * 150)) == 100


class TestAddPlaylist:
    @pytest.mark.asyncio
    async def test_duplicate_tvg_ids_collapse(self, playlist_store, playlist_repository):
        """Three channels, two sharing a tvg-id, store as two."""
        playlist = await _add(playlist_store)

        assert playlist.channel_count == 2
        assert playlist.parsed_data.duplicates_removed == 1
        stored = playlist_repository.get_by_id(playlist.id)
        assert stored.channel_count == 2
        assert [c.name for c in stored.channels] == ["News", "Local"]

    @pytest.mark.asyncio
    async def test_first_playlist_becomes_active(self, playlist_store, user_store):
        user_store.ensure_default_user()
        first = await _add(playlist_store)
        await _add(playlist_store, url=OTHER_URL, body=TWO_CHANNELS)

        assert playlist_store.active_playlist_id == first.id
        assert playlist_store.get_active_playlist().id == first.id
        assert user_store.current_user.settings.active_playlist_id == first.id
        assert playlist_store.stage == IngestionStage.DONE
        assert playlist_store.is_loading is False

    @pytest.mark.asyncio
    async def test_saving_selection_failure_does_not_fail_add(self, playlist_store, user_store,
                                                             playlist_repository):
        user_store.ensure_default_user()
        with patch.object(user_store.repository, "update_user_settings",
                          side_effect=NotFoundError("Settings not found")):
            playlist = await _add(playlist_store)

        assert playlist_repository.get_by_id(playlist.id) is not None
        assert [p.id for p in playlist_store.playlists] == [playlist.id]
        assert playlist_store.active_playlist_id == playlist.id
        assert playlist_store.stage == IngestionStage.DONE
        assert playlist_store.error is None
        assert user_store.current_user.settings.active_playlist_id is None

    @pytest.mark.asyncio
    async def test_credentials_are_stored(self, playlist_store, playlist_repository):
        with respx.mock:
            respx.get(host="x", path="/y.m3u").mock(
                return_value=httpx.Response(200, text=TWO_CHANNELS)
            )
            playlist = await playlist_store.add_playlist(
                CreatePlaylistInput(name="Private", url=URL, credentials=PlaylistCredentials("u", "p"))
            )
        assert playlist_repository.get_by_id(playlist.id).credentials == PlaylistCredentials("u", "p")

    @pytest.mark.asyncio
    async def test_unauthorized_is_authentication_error(self, playlist_store, playlist_repository):
        with respx.mock:
            respx.get(URL).mock(return_value=httpx.Response(401))
            with pytest.raises(AuthenticationError) as exc_info:
                await playlist_store.add_playlist(CreatePlaylistInput(name="TV", url=URL))

        assert not isinstance(exc_info.value, NetworkError)
        assert exc_info.value.status_code == 401
        assert playlist_store.error == "Authentication failed. Please check your credentials."
        assert playlist_store.error_category == "http"
        assert playlist_store.stage == IngestionStage.ERROR
        assert playlist_store.playlists == []
        assert playlist_repository.get_all() == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name,url,message", [
        ("", URL, "name is required"),
        ("   ", URL, "name is required"),
        ("TV", "", "URL is required"),
        ("TV", "ftp://x/y.m3u", "Invalid URL format"),
    ])
    async def test_input_validation(self, playlist_store, name, url, message):
        with respx.mock(assert_all_called=False) as router:
            route = router.get(url__regex=r".*").mock(return_value=httpx.Response(200, text=TWO_CHANNELS))
            with pytest.raises(InvalidInputError, match=message):
                await playlist_store.add_playlist(CreatePlaylistInput(name=name, url=url))
        assert not route.called
        assert playlist_store.error_category == "validation"

    @pytest.mark.asyncio
    async def test_duplicate_url_case_insensitive(self, playlist_store):
        await _add(playlist_store, name="Original")
        with pytest.raises(DuplicatePlaylistError, match='"Original"'):
            await playlist_store.add_playlist(CreatePlaylistInput(name="Again", url=URL.upper()))
        assert len(playlist_store.playlists) == 1

    @pytest.mark.asyncio
    async def test_structural_failure_persists_nothing(self, playlist_store, playlist_repository):
        with patch.object(playlist_store.service, "fetch_and_parse",
                          AsyncMock(return_value=ParsedPlaylist(items=[]))):
            with pytest.raises(PlaylistValidationError):
                await playlist_store.add_playlist(CreatePlaylistInput(name="TV", url=URL))

        assert playlist_store.error_category == "structural"
        assert playlist_repository.get_all() == []

    @pytest.mark.asyncio
    async def test_persistence_failure_leaves_store_unchanged(self, playlist_store):
        with patch.object(playlist_store.repository, "create", side_effect=RuntimeError("disk full")):
            with pytest.raises(RuntimeError):
                await _add(playlist_store)

        assert playlist_store.playlists == []
        assert playlist_store.active_playlist_id is None
        assert playlist_store.error == "disk full"
        assert playlist_store.stage == IngestionStage.ERROR

    @pytest.mark.asyncio
    async def test_clear_error(self, playlist_store):
        with respx.mock:
            respx.get(URL).mock(side_effect=httpx.ConnectError("refused"))
            with pytest.raises(NetworkError):
                await playlist_store.add_playlist(CreatePlaylistInput(name="TV", url=URL))

        playlist_store.clear_error()
        assert playlist_store.error is None
        assert playlist_store.stage == IngestionStage.IDLE


class TestRefreshPlaylist:
    @pytest.mark.asyncio
    async def test_refresh_replaces_channels(self, playlist_store, playlist_repository):
        playlist = await _add(playlist_store)

        with respx.mock:
            respx.get(URL).mock(return_value=httpx.Response(200, text=TWO_CHANNELS))
            refreshed = await playlist_store.refresh_playlist(playlist.id)

        assert [c.name for c in refreshed.channels] == ["A", "B"]
        assert refreshed.version == playlist.version + 1
        assert refreshed.last_fetched_at >= playlist.last_fetched_at
        assert playlist_store.get_playlist_by_id(playlist.id) == refreshed
        assert [c.name for c in playlist_repository.get_channels(playlist.id)] == ["A", "B"]

    @pytest.mark.asyncio
    async def test_refresh_to_empty_playlist_keeps_old_channels(self, playlist_store, playlist_repository, database):
        """Remote content now has zero channels: rejected before anything is written."""
        playlist = await _add(playlist_store)

        with respx.mock:
            respx.get(URL).mock(return_value=httpx.Response(200, text="#EXTM3U\n"))
            with pytest.raises(NoChannelsFoundError):
                await playlist_store.refresh_playlist(playlist.id)

        stored = playlist_repository.get_by_id(playlist.id)
        assert [c.name for c in stored.channels] == ["News", "Local"]
        assert stored.version == playlist.version
        assert _channel_rows(database, playlist.id) == 2
        assert playlist_store.get_playlist_by_id(playlist.id).channels == playlist.channels

    @pytest.mark.asyncio
    async def test_refresh_structural_rejection(self, playlist_store, playlist_repository):
        playlist = await _add(playlist_store)
        with patch.object(playlist_store.service, "fetch_and_parse",
                          AsyncMock(return_value=ParsedPlaylist(items=[]))):
            with pytest.raises(PlaylistValidationError):
                await playlist_store.refresh_playlist(playlist.id)
        assert len(playlist_repository.get_channels(playlist.id)) == 2

    @pytest.mark.asyncio
    async def test_concurrent_write_is_detected(self, playlist_store, playlist_repository):
        playlist = await _add(playlist_store)
        # Another writer updates the row after the store loaded it
        playlist_repository.update(playlist.id, {"name": "Renamed elsewhere"})

        with respx.mock:
            respx.get(URL).mock(return_value=httpx.Response(200, text=TWO_CHANNELS))
            with pytest.raises(ConflictError):
                await playlist_store.refresh_playlist(playlist.id)

        assert playlist_repository.get_by_id(playlist.id).name == "Renamed elsewhere"
        assert playlist_store.error_category == "persistence"

    @pytest.mark.asyncio
    async def test_refresh_unknown_playlist(self, playlist_store):
        with pytest.raises(NotFoundError):
            await playlist_store.refresh_playlist("nope")


class TestUpdatePlaylist:
    @pytest.mark.asyncio
    async def test_rename_does_not_refetch(self, playlist_store):
        playlist = await _add(playlist_store)
        with respx.mock(assert_all_called=False) as router:
            route = router.get(url__regex=r".*").mock(return_value=httpx.Response(500))
            updated = await playlist_store.update_playlist(playlist.id, UpdatePlaylistInput(name="  Renamed "))
        assert not route.called
        assert updated.name == "Renamed"
        assert updated.channels == playlist.channels

    @pytest.mark.asyncio
    async def test_url_change_refetches(self, playlist_store):
        playlist = await _add(playlist_store)
        with respx.mock:
            respx.get(OTHER_URL).mock(return_value=httpx.Response(200, text=TWO_CHANNELS))
            updated = await playlist_store.update_playlist(playlist.id, UpdatePlaylistInput(url=OTHER_URL))
        assert updated.url == OTHER_URL
        assert [c.name for c in updated.channels] == ["A", "B"]

    @pytest.mark.asyncio
    async def test_url_change_to_existing_url_rejected(self, playlist_store):
        first = await _add(playlist_store)
        await _add(playlist_store, url=OTHER_URL, body=TWO_CHANNELS)
        with pytest.raises(DuplicatePlaylistError):
            await playlist_store.update_playlist(first.id, UpdatePlaylistInput(url=OTHER_URL))


class TestRemovePlaylist:
    @pytest.mark.asyncio
    async def test_remove_cascades_and_reassigns_active(self, playlist_store, user_store, database):
        user_store.ensure_default_user()
        first = await _add(playlist_store)
        second = await _add(playlist_store, url=OTHER_URL, body=TWO_CHANNELS)
        assert playlist_store.active_playlist_id == first.id

        playlist_store.remove_playlist(first.id)

        assert _channel_rows(database, first.id) == 0
        assert [p.id for p in playlist_store.playlists] == [second.id]
        assert playlist_store.active_playlist_id == second.id
        assert user_store.current_user.settings.active_playlist_id == second.id

    @pytest.mark.asyncio
    async def test_remove_last_playlist_clears_active(self, playlist_store, user_store, user_repository):
        user = user_store.ensure_default_user()
        playlist = await _add(playlist_store)

        playlist_store.remove_playlist(playlist.id)

        assert playlist_store.active_playlist_id is None
        assert playlist_store.get_active_playlist() is None
        assert user_repository.get_user_settings(user.id).active_playlist_id is None

    @pytest.mark.asyncio
    async def test_remove_clears_selection_of_other_users(self, playlist_store, user_store, user_repository):
        from domain import CreateUserInput

        user_store.ensure_default_user()
        other = user_store.create_user(CreateUserInput(username="bob"))
        playlist = await _add(playlist_store)
        user_repository.update_user_settings(other.id, {"active_playlist_id": playlist.id})

        playlist_store.remove_playlist(playlist.id)
        assert user_repository.get_user_settings(other.id).active_playlist_id is None

    def test_remove_missing_playlist(self, playlist_store):
        with pytest.raises(NotFoundError):
            playlist_store.remove_playlist("nope")
        assert playlist_store.error_category == "persistence"


class TestLoadPlaylists:
    @pytest.mark.asyncio
    async def test_restores_persisted_selection(self, playlist_store, user_store,
                                                playlist_repository, playlist_service, test_settings):
        from stores import PlaylistStore

        user_store.ensure_default_user()
        await _add(playlist_store)
        second = await _add(playlist_store, url=OTHER_URL, body=TWO_CHANNELS)
        playlist_store.set_active_playlist(second.id)

        fresh = PlaylistStore(playlist_repository, playlist_service, user_store=user_store, settings=test_settings)
        fresh.load_playlists()

        assert len(fresh.playlists) == 2
        assert fresh.active_playlist_id == second.id

    def test_set_unknown_active_playlist(self, playlist_store):
        with pytest.raises(NotFoundError):
            playlist_store.set_active_playlist("nope")
