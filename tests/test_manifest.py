"""
Tests for manifest parsing, validation and URL resolution.
"""

import json
from unittest.mock import Mock, patch

import pytest
import requests

from hashsync.errors import (
    HttpStatusError,
    ManifestIntegrityError,
    ManifestParseError,
    NetworkError,
)
from hashsync.manifest import (
    AssetResolver,
    CdnResolver,
    FileEntry,
    Manifest,
    ReconciliationSpec,
    fetch_manifest,
)

HASH_A = "aa" * 32
HASH_B = "bb" * 32
HASH_Z = "cc" * 32


def sample_descriptor() -> dict:
    return {
        "files": [
            {"blake3": HASH_A, "size": 10, "path": "bin/tool.dll", "asset_name": "tool.dll"},
            {"blake3": HASH_B, "size": 20, "path": "data/a.bin", "archive": "data.zip"},
            {"blake3": HASH_B, "size": 30, "path": "data/b.bin", "archive": "data.zip"},
        ],
        "archives": [{"blake3": HASH_Z, "size": 40, "name": "data.zip"}],
        "renames": [["old/tool.dll", "bin/tool.dll"], {"from": "x", "to": "y"}],
        "deletions": ["obsolete"],
    }


class TestManifestParsing:

    def test_standalone_and_archive_members_split(self):
        manifest = Manifest.from_dict(sample_descriptor())

        assert [f.relative_path for f in manifest.files] == ["bin/tool.dll"]
        assert manifest.files[0].locator == "tool.dll"

        archive = manifest.get_archive("data.zip")
        assert [m.relative_path for m in archive.members] == ["data/a.bin", "data/b.bin"]
        assert archive.extracted_size == 50

    def test_counts_and_sizes(self):
        manifest = Manifest.from_dict(sample_descriptor())
        assert manifest.total_size == 50
        assert manifest.check_count == 3
        assert list(manifest.iter_paths()) == ["bin/tool.dll", "data/a.bin", "data/b.bin"]

    def test_reconciliation_keys(self):
        manifest = Manifest.from_dict(sample_descriptor())
        assert manifest.reconciliation.renames == (("old/tool.dll", "bin/tool.dll"), ("x", "y"))
        assert manifest.reconciliation.deletions == ("obsolete",)

    def test_locator_defaults_to_path(self):
        entry = FileEntry.from_dict({"blake3": HASH_A, "size": 1, "path": "x.bin"})
        assert entry.locator == "x.bin"

    def test_url_wins_over_asset_name(self):
        entry = FileEntry.from_dict({
            "blake3": HASH_A, "size": 1, "path": "x.bin",
            "asset_name": "x.bin", "url": "https://example.com/x.bin",
        })
        assert entry.locator == "https://example.com/x.bin"

    def test_empty_manifest(self):
        manifest = Manifest.from_dict({})
        assert manifest.files == ()
        assert manifest.archives == ()
        assert manifest.reconciliation.is_empty

    def test_serialized_manifest_parses_back(self, temp_dir):
        manifest = Manifest.from_dict(sample_descriptor())
        path = temp_dir / "update.json"
        manifest.save(path)
        assert Manifest.load(path) == manifest


class TestManifestErrors:

    @pytest.mark.parametrize("entry, field", [
        ({"size": 1, "path": "a"}, "blake3"),
        ({"blake3": HASH_A, "path": "a"}, "size"),
        ({"blake3": HASH_A, "size": 1}, "path"),
    ])
    def test_missing_field(self, entry, field):
        with pytest.raises(ManifestParseError, match=field):
            Manifest.from_dict({"files": [entry]})

    @pytest.mark.parametrize("entry", [
        {"blake3": "not-hex!", "size": 1, "path": "a"},
        {"blake3": HASH_A, "size": -1, "path": "a"},
        {"blake3": HASH_A, "size": "12", "path": "a"},
        {"blake3": HASH_A, "size": True, "path": "a"},
        {"blake3": HASH_A, "size": 1, "path": ""},
    ])
    def test_bad_values(self, entry):
        with pytest.raises(ManifestParseError):
            Manifest.from_dict({"files": [entry]})

    def test_undeclared_archive(self):
        data = {"files": [{"blake3": HASH_A, "size": 1, "path": "a", "archive": "missing.zip"}]}
        with pytest.raises(ManifestIntegrityError, match="missing.zip"):
            Manifest.from_dict(data)

    def test_duplicate_standalone_path(self):
        entry = {"blake3": HASH_A, "size": 1, "path": "a"}
        with pytest.raises(ManifestIntegrityError, match="duplicate"):
            Manifest.from_dict({"files": [entry, dict(entry)]})

    def test_duplicate_archive_name(self):
        archive = {"blake3": HASH_Z, "size": 1, "name": "d.zip"}
        with pytest.raises(ManifestIntegrityError):
            Manifest.from_dict({"archives": [archive, dict(archive)]})

    @pytest.mark.parametrize("key, value", [
        ("deletions", "cache"),
        ("deletions", {"a": 1}),
        ("renames", "old.bin"),
        ("renames", 5),
    ])
    def test_reconciliation_keys_must_be_lists(self, key, value):
        with pytest.raises(ManifestParseError, match=key):
            Manifest.from_dict({"files": [], "archives": [], key: value})

    def test_string_deletions_never_split_into_characters(self):
        with pytest.raises(ManifestParseError):
            ReconciliationSpec.from_dict({"deletions": "cache"})

    def test_archive_reference_must_be_string(self):
        data = {
            "files": [{"blake3": HASH_A, "size": 1, "path": "a", "archive": ["a.zip"]}],
            "archives": [{"blake3": HASH_Z, "size": 1, "name": "a.zip"}],
        }
        with pytest.raises(ManifestParseError, match="archive"):
            Manifest.from_dict(data)

    def test_locator_must_be_string(self):
        with pytest.raises(ManifestParseError, match="asset_name"):
            Manifest.from_dict({"files": [{"blake3": HASH_A, "size": 1, "path": "a", "asset_name": 7}]})

    def test_bad_rename_shape(self):
        with pytest.raises(ManifestParseError):
            ReconciliationSpec.from_dict({"renames": [["only-one"]]})

    def test_invalid_json(self):
        with pytest.raises(ManifestParseError):
            Manifest.from_json("{nope")

    def test_unreadable_file(self, temp_dir):
        with pytest.raises(ManifestParseError):
            Manifest.load(temp_dir / "missing.json")


class TestReconciliationSpec:

    def test_merged_appends_caller_entries(self):
        base = ReconciliationSpec(renames=(("a", "b"),), deletions=("x",))
        extra = ReconciliationSpec(renames=(("c", "d"),), deletions=("y",))
        merged = base.merged(extra)
        assert merged.renames == (("a", "b"), ("c", "d"))
        assert merged.deletions == ("x", "y")

    def test_merged_with_none(self):
        base = ReconciliationSpec(deletions=("x",))
        assert base.merged(None) is base


class TestResolvers:

    def test_cdn_joins_and_quotes(self):
        resolver = CdnResolver("https://cdn.example.com/game/")
        assert resolver.resolve("data/a b.bin") == "https://cdn.example.com/game/data/a%20b.bin"

    def test_absolute_locator_passes_through(self):
        resolver = CdnResolver("https://cdn.example.com")
        assert resolver.resolve("https://other.example.com/x") == "https://other.example.com/x"

    def test_cdn_requires_base(self):
        with pytest.raises(ValueError):
            CdnResolver("")

    def test_asset_mapping_with_fallback(self):
        resolver = AssetResolver(
            {"tool.dll": "https://releases.example.com/1/tool.dll"},
            fallback=CdnResolver("https://cdn.example.com"),
        )
        assert resolver.resolve("tool.dll") == "https://releases.example.com/1/tool.dll"
        assert resolver.resolve("other.bin") == "https://cdn.example.com/other.bin"

    def test_unknown_asset_without_fallback(self):
        with pytest.raises(ManifestParseError, match="missing.dll"):
            AssetResolver({}).resolve("missing.dll")


class TestFetchManifest:

    def test_local_path(self, temp_dir):
        path = temp_dir / "update.json"
        path.write_text(json.dumps(sample_descriptor()))
        assert len(fetch_manifest(str(path)).files) == 1

    def test_remote(self):
        response = Mock(ok=True, status_code=200)
        response.json.return_value = sample_descriptor()
        with patch("hashsync.manifest.fetch.requests.get", return_value=response) as get:
            manifest = fetch_manifest("https://example.com/update.json", user_agent="HashSync/test")

        assert manifest.get_archive("data.zip") is not None
        assert get.call_args.kwargs["headers"] == {"User-Agent": "HashSync/test"}

    def test_remote_status_error(self):
        response = Mock(ok=False, status_code=404)
        with patch("hashsync.manifest.fetch.requests.get", return_value=response):
            with pytest.raises(HttpStatusError) as exc_info:
                fetch_manifest("https://example.com/update.json")
        assert exc_info.value.status == 404

    def test_remote_connection_error(self):
        with patch("hashsync.manifest.fetch.requests.get", side_effect=requests.ConnectionError("refused")):
            with pytest.raises(NetworkError):
                fetch_manifest("https://example.com/update.json")

    def test_remote_invalid_json(self):
        response = Mock(ok=True, status_code=200)
        response.json.side_effect = ValueError("bad json")
        with patch("hashsync.manifest.fetch.requests.get", return_value=response):
            with pytest.raises(ManifestParseError):
                fetch_manifest("https://example.com/update.json")
