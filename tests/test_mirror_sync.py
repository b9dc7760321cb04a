"""
tests/test_mirror_sync.py - mirror declarations and the sync pass.

Real directories and symlinks under tmp_path; the media server is the
in-memory FakeHost from conftest.py.
"""
import os
import sqlite3
import threading

import pytest
from unittest.mock import patch

from langmirror.db.config_store import ConfigurationUnavailable
from langmirror.models import STATUS_ACTIVE, STATUS_PENDING, STATUS_STALE, UserLanguageAssignment
from langmirror.services.mirror import MirrorService, safe_dir_name, translate_path


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

@pytest.fixture
def media(tmp_path):
    movies = tmp_path / "media" / "movies"
    for name in ("Film A (2001)", "Film B (2002)", ".hidden"):
        (movies / name).mkdir(parents=True)
    return movies


def _setup(store, host, tmp_path, media):
    host.add_library("movies", "Movies", [str(media)])
    service = MirrorService(store, host)
    alt = service.create_alternative("Portuguese", "pt-BR", str(tmp_path / "mirrors" / "pt"))
    mirror = service.add_mirror(alt.id, "movies", "Filmes")
    return service, alt, mirror


def _mirror(store, mirror_id):
    return store.read(lambda c: c.find_mirror(mirror_id)[1])


# ---------------------------------------------------------------------------
# Declarations
# ---------------------------------------------------------------------------

class TestDeclarations:
    @pytest.mark.parametrize("name,code,path", [
        ("", "pt-BR", "/m"),
        ("Portuguese", "", "/m"),
        ("Portuguese", "portuguese", "/m"),
        ("Portuguese", "pt-BR", ""),
    ])
    def test_create_alternative_validation(self, store, host, name, code, path):
        with pytest.raises(ValueError):
            MirrorService(store, host).create_alternative(name, code, path)

    def test_create_alternative_defaults_metadata_from_code(self, store, host):
        alt = MirrorService(store, host).create_alternative("Portuguese", "pt-BR", "/m/pt")
        assert (alt.metadata_language, alt.metadata_country) == ("pt", "BR")

    def test_duplicate_alternative_name_rejected(self, store, host):
        service = MirrorService(store, host)
        service.create_alternative("Portuguese", "pt-BR", "/m/pt")
        with pytest.raises(ValueError):
            service.create_alternative("portuguese", "pt", "/m/pt2")

    def test_shared_destination_path_rejected(self, store, host):
        service = MirrorService(store, host)
        service.create_alternative("Portuguese", "pt-BR", "/m/pt")
        with pytest.raises(ValueError, match="destination path"):
            service.create_alternative("Spanish", "es", "/m/pt/")

    def test_two_sources_with_one_name_cannot_share_a_folder(self, store, host, tmp_path, media):
        service, alt, _ = _setup(store, host, tmp_path, media)
        host.add_library("movies4k", "Movies", [str(tmp_path / "media" / "movies4k")])
        with pytest.raises(ValueError, match="target folder"):
            service.add_mirror(alt.id, "movies4k")

    def test_add_mirror_without_configuration_raises(self, store, host, tmp_path, media):
        service, alt, _ = _setup(store, host, tmp_path, media)
        host.add_library("shows", "Shows", ["/media/shows"], "tvshows")
        with patch.object(store, "update_if", return_value=False):
            with pytest.raises(ConfigurationUnavailable):
                service.add_mirror(alt.id, "shows")

    def test_add_mirror_unknown_source(self, store, host, tmp_path, media):
        service, alt, _ = _setup(store, host, tmp_path, media)
        with pytest.raises(ValueError, match="Source library not found"):
            service.add_mirror(alt.id, "nope")

    def test_one_mirror_per_source(self, store, host, tmp_path, media):
        service, alt, _ = _setup(store, host, tmp_path, media)
        with pytest.raises(ValueError):
            service.add_mirror(alt.id, "movies")

    def test_add_mirror_unknown_alternative(self, store, host, tmp_path, media):
        service, _, _ = _setup(store, host, tmp_path, media)
        with pytest.raises(ValueError, match="Language alternative not found"):
            service.add_mirror("missing", "movies")

    def test_new_mirror_is_pending(self, store, host, tmp_path, media):
        _, _, mirror = _setup(store, host, tmp_path, media)
        stored = _mirror(store, mirror.id)
        assert stored.status == STATUS_PENDING
        assert stored.target_library_id is None
        assert stored.target_path == str(tmp_path / "mirrors" / "pt" / "Movies")

    def test_remove_mirror_only_once(self, store, host, tmp_path, media):
        service, alt, mirror = _setup(store, host, tmp_path, media)
        assert service.remove_mirror(alt.id, mirror.id) is True
        assert service.remove_mirror(alt.id, mirror.id) is False


# ---------------------------------------------------------------------------
# Sync pass
# ---------------------------------------------------------------------------

class TestSyncPass:
    def test_first_run_links_entries_and_creates_library(self, store, host, tmp_path, media):
        service, _, mirror = _setup(store, host, tmp_path, media)

        report = service.run_mirror_sync()

        target = tmp_path / "mirrors" / "pt" / "Movies"
        assert report.created == [mirror.id]
        assert report.errors == []
        assert os.readlink(target / "Film A (2001)") == str(media / "Film A (2001)")
        assert os.readlink(target / "Film B (2002)") == str(media / "Film B (2002)")
        assert not os.path.lexists(target / ".hidden")

        assert host.mutations == [("create_library", "Filmes", (str(target),))]
        assert host.library_options["created1"] == ("pt", "BR")
        stored = _mirror(store, mirror.id)
        assert stored.status == STATUS_ACTIVE
        assert stored.target_library_id == "created1"
        assert stored.last_synced_at is not None

    def test_second_run_is_write_free(self, store, host, tmp_path, media):
        service, _, mirror = _setup(store, host, tmp_path, media)
        service.run_mirror_sync()
        host.mutations.clear()

        with patch("os.symlink") as symlink, patch("os.unlink") as unlink, \
                patch.object(store, "update_if", wraps=store.update_if) as update_if:
            report = service.run_mirror_sync()

        assert report.unchanged == [mirror.id]
        symlink.assert_not_called()
        unlink.assert_not_called()
        update_if.assert_not_called()
        assert host.mutations == []

    def test_source_changes_are_followed(self, store, host, tmp_path, media):
        service, _, mirror = _setup(store, host, tmp_path, media)
        service.run_mirror_sync()
        (media / "Film C (2003)").mkdir()
        (media / "Film B (2002)").rmdir()

        report = service.run_mirror_sync()

        target = tmp_path / "mirrors" / "pt" / "Movies"
        assert report.updated == [mirror.id]
        assert os.path.islink(target / "Film C (2003)")
        assert not os.path.lexists(target / "Film B (2002)")
        assert os.path.islink(target / "Film A (2001)")

    def test_foreign_entries_are_untouched(self, store, host, tmp_path, media):
        service, _, _ = _setup(store, host, tmp_path, media)
        service.run_mirror_sync()
        target = tmp_path / "mirrors" / "pt" / "Movies"
        (target / "notes.txt").write_text("manual")
        os.symlink("/somewhere/else", target / "extra")
        (media / "Film A (2001)").rmdir()

        service.run_mirror_sync()

        assert (target / "notes.txt").read_text() == "manual"
        assert os.readlink(target / "extra") == "/somewhere/else"
        assert not os.path.lexists(target / "Film A (2001)")

    def test_empty_source_keeps_existing_links(self, store, host, tmp_path, media):
        service, _, mirror = _setup(store, host, tmp_path, media)
        service.run_mirror_sync()
        (media / "Film A (2001)").rmdir()
        (media / "Film B (2002)").rmdir()

        report = service.run_mirror_sync()

        target = tmp_path / "mirrors" / "pt" / "Movies"
        assert report.unchanged == [mirror.id]
        assert os.path.islink(target / "Film A (2001)")

    def test_missing_source_marks_stale_and_keeps_tree(self, store, host, tmp_path, media):
        service, _, mirror = _setup(store, host, tmp_path, media)
        service.run_mirror_sync()
        del host.libraries["movies"]
        host.mutations.clear()

        report = service.run_mirror_sync()

        assert report.stale == [mirror.id]
        assert _mirror(store, mirror.id).status == STATUS_STALE
        assert os.path.islink(tmp_path / "mirrors" / "pt" / "Movies" / "Film A (2001)")
        assert host.mutations == []

    def test_unreadable_source_is_an_isolated_error(self, store, host, tmp_path, media):
        service, alt, mirror = _setup(store, host, tmp_path, media)
        host.add_library("shows", "Shows", [str(tmp_path / "does-not-exist")])
        broken = service.add_mirror(alt.id, "shows")

        report = service.run_mirror_sync()

        assert report.created == [mirror.id]
        assert [e["id"] for e in report.errors] == [broken.id]
        assert "Cannot read source folder" in _mirror(store, broken.id).last_error

    def test_create_failure_is_isolated_per_mirror(self, store, host, tmp_path, media):
        service, alt, mirror = _setup(store, host, tmp_path, media)
        shows = tmp_path / "media" / "shows"
        (shows / "Show 1").mkdir(parents=True)
        host.add_library("shows", "Shows", [str(shows)], "tvshows")
        other = service.add_mirror(alt.id, "shows", "Séries")
        host.fail_create = {"Filmes"}

        report = service.run_mirror_sync()

        assert report.created == [other.id]
        assert [e["id"] for e in report.errors] == [mirror.id]
        failed = _mirror(store, mirror.id)
        assert failed.status == STATUS_PENDING
        assert "create Filmes failed" in failed.last_error

        host.fail_create = set()
        report = service.run_mirror_sync()
        assert report.created == [mirror.id]
        assert _mirror(store, mirror.id).last_error is None

    def test_store_write_failure_is_isolated_per_mirror(self, store, host, tmp_path, media):
        service, alt, mirror = _setup(store, host, tmp_path, media)
        shows = tmp_path / "media" / "shows"
        (shows / "Show 1").mkdir(parents=True)
        host.add_library("shows", "Shows", [str(shows)], "tvshows")
        other = service.add_mirror(alt.id, "shows", "Séries")

        real_persist = store._persist
        calls = []

        def _locked_once(document):
            calls.append(document)
            if len(calls) == 1:
                raise sqlite3.OperationalError("database is locked")
            real_persist(document)

        with patch.object(store, "_persist", side_effect=_locked_once):
            report = service.run_mirror_sync()

        assert [e["id"] for e in report.errors] == [mirror.id]
        assert report.created == [other.id]
        assert _mirror(store, mirror.id).status == STATUS_PENDING
        assert _mirror(store, other.id).status == STATUS_ACTIVE

        report = service.run_mirror_sync()
        assert report.created == [mirror.id]

    def test_store_unwritable_for_whole_pass_still_returns_report(self, store, host, tmp_path, media):
        service, _, mirror = _setup(store, host, tmp_path, media)

        with patch.object(store, "_persist", side_effect=sqlite3.OperationalError("disk I/O error")):
            report = service.run_mirror_sync()

        assert [e["id"] for e in report.errors] == [mirror.id]
        assert "disk I/O error" in report.errors[0]["error"]
        assert _mirror(store, mirror.id).status == STATUS_PENDING

    def test_existing_library_at_target_path_is_adopted(self, store, host, tmp_path, media):
        service, _, mirror = _setup(store, host, tmp_path, media)
        host.add_library("existing", "Filmes", [str(tmp_path / "mirrors" / "pt" / "Movies")])

        report = service.run_mirror_sync()

        assert report.created == [mirror.id]
        assert host.mutations == []
        assert _mirror(store, mirror.id).target_library_id == "existing"

    def test_library_lost_on_server_is_recreated(self, store, host, tmp_path, media):
        service, _, mirror = _setup(store, host, tmp_path, media)
        service.run_mirror_sync()
        del host.libraries["created1"]

        report = service.run_mirror_sync()

        assert report.created == [mirror.id]
        assert _mirror(store, mirror.id).target_library_id == "created2"

    def test_cancel_before_first_mirror(self, store, host, tmp_path, media):
        service, _, _ = _setup(store, host, tmp_path, media)
        cancel = threading.Event()
        cancel.set()

        report = service.run_mirror_sync(cancel_event=cancel)

        assert report.cancelled is True
        assert report.created == []
        assert host.mutations == []

    def test_declaration_removed_during_creation_is_abandoned(self, store, host, tmp_path, media):
        service, alt, mirror = _setup(store, host, tmp_path, media)
        host.on_create = lambda library_id: service.remove_mirror(alt.id, mirror.id)

        report = service.run_mirror_sync()

        assert [e["id"] for e in report.errors] == [mirror.id]
        assert "created1" not in host.libraries
        assert not os.path.exists(tmp_path / "mirrors" / "pt" / "Movies")

        report = service.run_mirror_sync()
        assert report.removed == [mirror.id]
        assert store.read(lambda c: c.retired_mirrors) == []

    def test_server_listing_failure_aborts_pass(self, store, host, tmp_path, media):
        from langmirror.clients.jellyfin_client import HostApiError
        service, _, _ = _setup(store, host, tmp_path, media)

        with patch.object(host, "list_libraries", side_effect=HostApiError("down")):
            report = service.run_mirror_sync()

        assert report.errors == [{"id": "host", "error": "down"}]


# ---------------------------------------------------------------------------
# Retirement
# ---------------------------------------------------------------------------

class TestRetirement:
    def test_delete_alternative_retires_mirrors_and_unassigns_users(self, store, host, tmp_path, media):
        service, alt, mirror = _setup(store, host, tmp_path, media)
        service.run_mirror_sync()

        def _assign(c):
            c.user_language_assignments.append(UserLanguageAssignment("u1", alt.id))
            c.default_language_alternative_id = alt.id
        store.update(_assign)

        assert service.delete_alternative(alt.id) is True

        config = store.read(lambda c: c)
        assert config.language_alternatives == []
        assert config.find_assignment("u1").language_alternative_id is None
        assert config.default_language_alternative_id is None
        assert [r.mirror_id for r in config.retired_mirrors] == [mirror.id]

        report = service.run_mirror_sync()

        assert report.removed == [mirror.id]
        assert "created1" not in host.libraries
        assert not os.path.exists(tmp_path / "mirrors" / "pt" / "Movies")
        assert store.read(lambda c: c.retired_mirrors) == []
        # Source content is never touched
        assert (media / "Film A (2001)").is_dir()

    def test_delete_unknown_alternative(self, store, host):
        assert MirrorService(store, host).delete_alternative("missing") is False

    def test_failed_library_removal_keeps_tombstone(self, store, host, tmp_path, media):
        service, alt, mirror = _setup(store, host, tmp_path, media)
        service.run_mirror_sync()
        service.remove_mirror(alt.id, mirror.id)
        host.fail_remove = {"created1"}

        report = service.run_mirror_sync()

        assert [e["id"] for e in report.errors] == [mirror.id]
        assert len(store.read(lambda c: c.retired_mirrors)) == 1

        host.fail_remove = set()
        report = service.run_mirror_sync()
        assert report.removed == [mirror.id]
        assert store.read(lambda c: c.retired_mirrors) == []

    def test_tombstone_reused_by_live_mirror_is_dropped_without_teardown(self, store, host, tmp_path, media):
        service, alt, mirror = _setup(store, host, tmp_path, media)
        service.run_mirror_sync()
        service.remove_mirror(alt.id, mirror.id)
        service.add_mirror(alt.id, "movies", "Filmes")
        host.mutations.clear()

        report = service.run_mirror_sync()

        assert report.removed == [mirror.id]
        assert ("remove_library", "created1") not in host.mutations
        assert "created1" in host.libraries


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

class TestPaths:
    def test_translate_path(self):
        assert translate_path("/media/movies/x", "/media", "/mnt/m") == "/mnt/m/movies/x"
        assert translate_path("/mediax/a", "/media", "/mnt/m") == "/mediax/a"
        assert translate_path("/media/a", "", "") == "/media/a"

    def test_safe_dir_name(self):
        assert safe_dir_name("TV: Shows/Kids") == "TV_ Shows_Kids"
        assert safe_dir_name("...") == "library"

    def test_links_use_server_view_of_paths(self, store, host, tmp_path, media):
        host.add_library("movies", "Movies", ["/media/movies"])
        service = MirrorService(store, host, media_path_in_jellyfin="/media",
                                media_path_on_host=str(tmp_path / "media"))
        alt = service.create_alternative("Portuguese", "pt-BR", "/media/mirrors/pt")
        service.add_mirror(alt.id, "movies", "Filmes")

        report = service.run_mirror_sync()

        local = tmp_path / "media" / "mirrors" / "pt" / "Movies"
        assert report.errors == []
        assert os.readlink(local / "Film A (2001)") == "/media/movies/Film A (2001)"
        assert host.mutations == [("create_library", "Filmes", ("/media/mirrors/pt/Movies",))]
