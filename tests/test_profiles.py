"""Tests for the project profile catalog."""

import json

from switchboard.models import ProjectProfile
from switchboard.profiles import ProfileStore


class TestProfileStore:
    """Loading profiles from JSON."""

    def test_load(self, tmp_path) -> None:
        """Profiles are keyed by slug with optional fields."""
        path = tmp_path / "profiles.json"
        path.write_text(json.dumps([
            {"slug": "api", "name": "API", "dir": "/srv/api", "default_model": "opus"},
            {"slug": "web", "name": "Web", "dir": "/srv/web"},
        ]))
        store = ProfileStore(path)
        store.load()

        assert store.get("api").default_model == "opus"
        assert store.get("web").permission_mode is None
        assert [p.slug for p in store.all()] == ["api", "web"]
        assert store.get("demo") is None

    def test_missing_file_is_empty(self, tmp_path) -> None:
        """A missing file yields an empty catalog."""
        store = ProfileStore(tmp_path / "nope.json")
        store.load()
        assert store.all() == []

    def test_invalid_entries_skipped(self, tmp_path) -> None:
        """Entries missing required fields are skipped."""
        path = tmp_path / "profiles.json"
        path.write_text(json.dumps([{"slug": "x"}, {"slug": "ok", "name": "OK", "dir": "/"}]))
        store = ProfileStore(path)
        store.load()
        assert [p.slug for p in store.all()] == ["ok"]

    def test_add(self, tmp_path) -> None:
        store = ProfileStore(tmp_path / "p.json")
        store.add(ProjectProfile(slug="a", name="A", dir="/a"))
        assert store.get("a").name == "A"
