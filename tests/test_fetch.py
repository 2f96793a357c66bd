"""Tests for source fetching into the download cache."""

from pathlib import Path

import pytest
from conftest import sha256_of

from autobuilder.builds.fetch import fetch_source, mirror_urls, verify_checksum
from autobuilder.errors import FetchError
from autobuilder.recipes import Recipe

PAYLOAD = b"source archive bytes"
URL = "https://example.com/pub/pkg-1.0.tar.gz"


class FakeDownloader:
    """Downloader writing fixed bytes for chosen URLs."""

    def __init__(self, payloads: dict[str, bytes]):
        self.payloads = payloads
        self.calls: list[str] = []

    def __call__(self, url: str, dest: Path) -> bool:
        self.calls.append(url)
        if url not in self.payloads:
            return False
        dest.write_bytes(self.payloads[url])
        return True


def recipe(sha: str = "", url: str = URL) -> Recipe:
    return Recipe(name="pkg", version="1.0", url=url, sha256=sha)


class TestMirrorUrls:
    """Tests for mirror candidate URLs."""

    def test_primary_then_mirrors(self):
        """The primary URL comes first, then the file under each mirror."""
        urls = mirror_urls(URL, ["https://m1.example/gnu/", "https://m2.example"])
        assert urls == [
            URL,
            "https://m1.example/gnu/pkg-1.0.tar.gz",
            "https://m2.example/pkg-1.0.tar.gz",
        ]

    def test_no_mirrors(self):
        """Without mirrors only the primary URL is tried."""
        assert mirror_urls(URL, []) == [URL]


class TestFetchSource:
    """Tests for fetch_source."""

    def test_downloads_and_verifies(self, tmp_path: Path):
        """A fresh download is verified and kept in the cache."""
        downloader = FakeDownloader({URL: PAYLOAD})
        path = fetch_source(recipe(sha256_of(PAYLOAD)), tmp_path, downloader)
        assert path == tmp_path / "pkg-1.0.tar.gz"
        assert path.read_bytes() == PAYLOAD
        assert downloader.calls == [URL]

    def test_cache_reused_when_checksum_matches(self, tmp_path: Path):
        """A cached file with a matching checksum is not downloaded again."""
        (tmp_path / "pkg-1.0.tar.gz").write_bytes(PAYLOAD)
        downloader = FakeDownloader({URL: b"other"})
        path = fetch_source(recipe(sha256_of(PAYLOAD)), tmp_path, downloader)
        assert path.read_bytes() == PAYLOAD
        assert downloader.calls == []

    def test_cache_reused_without_checksum(self, tmp_path: Path):
        """Without a declared checksum any cached file is reused."""
        (tmp_path / "pkg-1.0.tar.gz").write_bytes(b"anything")
        path = fetch_source(recipe(), tmp_path, downloader=None)
        assert path.read_bytes() == b"anything"

    def test_corrupt_cache_redownloaded(self, tmp_path: Path):
        """A cached file failing its checksum is replaced by a fresh download."""
        (tmp_path / "pkg-1.0.tar.gz").write_bytes(b"corrupt")
        downloader = FakeDownloader({URL: PAYLOAD})
        path = fetch_source(recipe(sha256_of(PAYLOAD)), tmp_path, downloader)
        assert path.read_bytes() == PAYLOAD
        assert downloader.calls == [URL]

    def test_checksum_mismatch_after_download(self, tmp_path: Path):
        """A download that fails verification is removed and reported."""
        downloader = FakeDownloader({URL: b"tampered"})
        with pytest.raises(FetchError) as exc_info:
            fetch_source(recipe(sha256_of(PAYLOAD)), tmp_path, downloader)
        assert exc_info.value.code == "checksum_mismatch"
        assert not (tmp_path / "pkg-1.0.tar.gz").exists()

    def test_malformed_checksum_fails(self, tmp_path: Path):
        """A truncated declared checksum can never verify."""
        downloader = FakeDownloader({URL: PAYLOAD})
        with pytest.raises(FetchError):
            fetch_source(recipe(sha256_of(PAYLOAD)[:40]), tmp_path, downloader)

    def test_no_url(self, tmp_path: Path):
        """A recipe without a URL cannot be fetched."""
        with pytest.raises(FetchError) as exc_info:
            fetch_source(recipe(url=""), tmp_path, FakeDownloader({}))
        assert exc_info.value.code == "no_url"

    def test_no_downloader(self, tmp_path: Path):
        """A cache miss without a downloader fails."""
        with pytest.raises(FetchError) as exc_info:
            fetch_source(recipe(), tmp_path, downloader=None)
        assert exc_info.value.code == "no_downloader"

    def test_falls_back_to_mirror(self, tmp_path: Path):
        """When the primary fails the mirror copy is used."""
        mirror = "https://mirror.example/pkg-1.0.tar.gz"
        downloader = FakeDownloader({mirror: PAYLOAD})
        path = fetch_source(
            recipe(sha256_of(PAYLOAD)),
            tmp_path,
            downloader,
            mirrors=["https://mirror.example"],
        )
        assert path.read_bytes() == PAYLOAD
        assert downloader.calls == [URL, mirror]

    def test_all_candidates_fail(self, tmp_path: Path):
        """An unreachable source is a FetchError."""
        downloader = FakeDownloader({})
        with pytest.raises(FetchError) as exc_info:
            fetch_source(recipe(), tmp_path, downloader, mirrors=["https://m.example"])
        assert exc_info.value.code == "download_failed"
        assert len(downloader.calls) == 2


class TestVerifyChecksum:
    """Tests for verify_checksum."""

    def test_case_insensitive(self, tmp_path: Path):
        """Digests compare case-insensitively."""
        path = tmp_path / "f"
        path.write_bytes(PAYLOAD)
        assert verify_checksum(path, sha256_of(PAYLOAD).upper())
        assert not verify_checksum(path, "0" * 64)
