"""
Unit Tests for the Semantic Version Store

Tests SemVer parsing and bumping, the bounded mirror, and fail-soft
behaviour of the store against an in-memory backend.
"""

import pytest

from feedcache.core.config.constants import DEFAULT_VERSION, VersionLevel
from feedcache.core.exceptions import InvalidVersionError, VersionStoreError
from feedcache.infrastructure.cache.version_store import SemVer, VersionMirror, VersionStore


@pytest.mark.unit
class TestSemVer:
    """Test suite for the SemVer value type."""

    def test_parse(self):
        assert SemVer.parse("1.2.3") == SemVer(1, 2, 3)

    @pytest.mark.parametrize("text", ["1.2", "1.2.3.4", "a.b.c", "v1.0.0", "", "1.-1.0", None])
    def test_parse_rejects_malformed(self, text):
        with pytest.raises(InvalidVersionError):
            SemVer.parse(text)

    def test_numeric_ordering(self):
        assert SemVer.parse("1.10.0") > SemVer.parse("1.9.0")
        assert SemVer.parse("2.0.0") > SemVer.parse("1.99.99")

    def test_bump_levels(self):
        version = SemVer(1, 2, 3)

        assert str(version.bump(VersionLevel.PATCH)) == "1.2.4"
        assert str(version.bump(VersionLevel.MINOR)) == "1.3.0"
        assert str(version.bump(VersionLevel.MAJOR)) == "2.0.0"
        assert str(version.bump("minor")) == "1.3.0"


@pytest.mark.unit
class TestVersionMirror:
    """Test suite for the bounded mirror."""

    def test_evicts_least_recently_used(self):
        mirror = VersionMirror(max_size=2)
        mirror.put("a", "1.0.0")
        mirror.put("b", "1.0.0")
        mirror.get("a")
        mirror.put("c", "1.0.0")

        assert "a" in mirror
        assert "b" not in mirror
        assert len(mirror) == 2

    def test_evict_and_clear(self):
        mirror = VersionMirror(max_size=10)
        mirror.put("a", "1.0.0")
        mirror.put("b", "1.0.0")

        assert mirror.evict("a") is True
        assert mirror.evict("a") is False
        mirror.clear()
        assert len(mirror) == 0


@pytest.mark.unit
class TestVersionStoreStatics:
    """compare and is_valid_format."""

    def test_compare(self):
        assert VersionStore.compare("1.0.1", "1.0.0") == 1
        assert VersionStore.compare("1.0.0", "1.0.1") == -1
        assert VersionStore.compare("1.0.0", "1.0.0") == 0

    def test_compare_malformed_is_equal(self):
        assert VersionStore.compare("garbage", "1.0.0") == 0

    def test_is_valid_format(self):
        assert VersionStore.is_valid_format("0.0.0")
        assert not VersionStore.is_valid_format("1.0")


@pytest.mark.unit
class TestVersionStoreReads:
    """get_version and is_stale."""

    @pytest.mark.asyncio
    async def test_missing_version_defaults_and_persists(self, versions, kv_store):
        version = await versions.get_version("feed:1")

        assert version == DEFAULT_VERSION
        assert kv_store.data["cache_version:feed:1"] == DEFAULT_VERSION

    @pytest.mark.asyncio
    async def test_missing_version_without_create(self, versions, kv_store):
        version = await versions.get_version("feed:1", create_if_missing=False)

        assert version == DEFAULT_VERSION
        assert "cache_version:feed:1" not in kv_store.data

    @pytest.mark.asyncio
    async def test_malformed_stored_version_defaults(self, versions, kv_store):
        kv_store.data["cache_version:feed:1"] = "not-a-version"

        assert await versions.get_version("feed:1") == DEFAULT_VERSION

    @pytest.mark.asyncio
    async def test_second_read_served_from_mirror(self, versions, kv_store):
        kv_store.data["cache_version:feed:1"] = "1.0.4"
        await versions.get_version("feed:1")
        reads = kv_store.count_calls("get")

        assert await versions.get_version("feed:1") == "1.0.4"
        assert kv_store.count_calls("get") == reads

    @pytest.mark.asyncio
    async def test_backend_failure_defaults(self, versions, kv_store):
        kv_store.failing = True

        assert await versions.get_version("feed:1") == DEFAULT_VERSION

    @pytest.mark.asyncio
    async def test_backend_failure_strict_raises(self, versions, kv_store):
        kv_store.failing = True

        with pytest.raises(VersionStoreError):
            await versions.get_version("feed:1", strict=True)

    @pytest.mark.asyncio
    async def test_is_stale(self, versions, kv_store):
        kv_store.data["cache_version:feed:1"] = "1.0.3"

        assert await versions.is_stale("feed:1", "1.0.2") is True
        assert await versions.is_stale("feed:1", "1.0.3") is False
        assert await versions.is_stale("feed:1", "1.1.0") is False

    @pytest.mark.asyncio
    async def test_is_stale_reads_backend_not_mirror(self, versions, kv_store):
        kv_store.data["cache_version:feed:1"] = "1.0.0"
        await versions.get_version("feed:1")

        # Another process bumps the version
        kv_store.data["cache_version:feed:1"] = "1.0.1"

        assert await versions.is_stale("feed:1", "1.0.0") is True

    @pytest.mark.asyncio
    async def test_is_stale_on_backend_error(self, versions, kv_store):
        kv_store.failing = True

        assert await versions.is_stale("feed:1", "9.9.9") is True


@pytest.mark.unit
class TestVersionStoreWrites:
    """bump, update_version, batch_bump, clear and reset."""

    @pytest.mark.asyncio
    async def test_bump_from_missing(self, versions, kv_store):
        assert await versions.bump("feed:1") == "1.0.1"
        assert kv_store.data["cache_version:feed:1"] == "1.0.1"

    @pytest.mark.asyncio
    async def test_bump_levels(self, versions, kv_store):
        kv_store.data["cache_version:feed:1"] = "1.2.3"

        assert await versions.bump("feed:1", VersionLevel.MINOR) == "1.3.0"
        assert await versions.bump("feed:1", VersionLevel.MAJOR) == "2.0.0"

    @pytest.mark.asyncio
    async def test_bump_ignores_stale_mirror(self, versions, kv_store):
        kv_store.data["cache_version:feed:1"] = "1.0.0"
        await versions.get_version("feed:1")
        kv_store.data["cache_version:feed:1"] = "1.0.7"

        assert await versions.bump("feed:1") == "1.0.8"

    @pytest.mark.asyncio
    async def test_bump_updates_mirror(self, versions, kv_store):
        await versions.bump("feed:1")
        reads = kv_store.count_calls("get")

        assert await versions.get_version("feed:1") == "1.0.1"
        assert kv_store.count_calls("get") == reads

    @pytest.mark.asyncio
    async def test_bump_on_failure_never_raises(self, versions, kv_store):
        kv_store.failing = True

        assert await versions.bump("feed:1") == DEFAULT_VERSION

    @pytest.mark.asyncio
    async def test_bump_write_failure_returns_stored_version(self, versions, kv_store):
        kv_store.data["cache_version:feed:1"] = "1.4.2"
        kv_store.failing_operations = {"set"}

        assert await versions.bump("feed:1") == "1.4.2"
        assert kv_store.data["cache_version:feed:1"] == "1.4.2"

        kv_store.failing_operations = set()
        assert await versions.get_version("feed:1") == "1.4.2"

    @pytest.mark.asyncio
    async def test_update_version_explicit(self, versions, kv_store):
        assert await versions.update_version("feed:1", "3.1.4") == "3.1.4"
        assert kv_store.data["cache_version:feed:1"] == "3.1.4"

    @pytest.mark.asyncio
    async def test_update_version_invalid_falls_back_to_bump(self, versions, kv_store):
        kv_store.data["cache_version:feed:1"] = "1.0.0"

        assert await versions.update_version("feed:1", "bogus") == "1.0.1"

    @pytest.mark.asyncio
    async def test_set_explicit_rejects_malformed(self, versions):
        with pytest.raises(InvalidVersionError):
            await versions.set_explicit("feed:1", "1.0")

    @pytest.mark.asyncio
    async def test_batch_bump(self, versions, kv_store):
        kv_store.data["cache_version:a"] = "1.0.0"
        kv_store.data["cache_version:b"] = "2.3.4"

        results = await versions.batch_bump(["a", "b"], VersionLevel.MINOR)

        assert results == {
            "a": {"old_version": "1.0.0", "new_version": "1.1.0"},
            "b": {"old_version": "2.3.4", "new_version": "2.4.0"},
        }

    @pytest.mark.asyncio
    async def test_batch_bump_collects_errors(self, versions, kv_store):
        kv_store.failing = True

        results = await versions.batch_bump(["a"])

        assert "error" in results["a"]

    @pytest.mark.asyncio
    async def test_clear_version(self, versions, kv_store):
        await versions.bump("feed:1")

        assert await versions.clear_version("feed:1") is True
        assert "cache_version:feed:1" not in kv_store.data
        assert versions.mirror_size == 0

    @pytest.mark.asyncio
    async def test_reset_all(self, versions, kv_store):
        kv_store.data["cache_version:a"] = "1.4.0"
        kv_store.data["cache_version:b"] = "3.0.0"
        kv_store.data["unrelated"] = "x"

        assert await versions.reset_all() == 2
        assert kv_store.data["cache_version:a"] == DEFAULT_VERSION
        assert kv_store.data["cache_version:b"] == DEFAULT_VERSION
        assert kv_store.data["unrelated"] == "x"

    @pytest.mark.asyncio
    async def test_version_stats(self, versions, kv_store):
        kv_store.data["cache_version:a"] = "1.0.0"
        kv_store.data["cache_version:b"] = "1.2.0"
        kv_store.data["cache_version:c"] = "1.2.0"

        stats = await versions.get_version_stats()

        assert stats["total_cache_keys"] == 3
        assert sorted(stats["newest_versions"]) == ["b", "c"]
        assert stats["oldest_versions"] == ["a"]


@pytest.mark.unit
class TestVersionMonotonic:
    """A sequence of bumps never moves backwards."""

    @pytest.mark.asyncio
    async def test_sequence_is_increasing(self, versions):
        seen = [await versions.get_version("k")]
        for level in ["patch", "patch", "minor", "patch", "major", "patch"]:
            seen.append(await versions.bump("k", level))

        parsed = [SemVer.parse(v) for v in seen]
        assert parsed == sorted(parsed)
        assert len(set(parsed)) == len(parsed)
