"""Tests for user-agent fingerprinting."""

import hashlib
import re

from sessionguard.service.fingerprint import (
    ClientHeuristic,
    FingerprintDeriver,
    derive_fingerprint,
    detect_cpu_architecture,
)

CHROME_WINDOWS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.6099.109 Safari/537.36"
)
# Same browser major, OS and architecture; only the patch level differs
CHROME_WINDOWS_PATCHED = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.6099.217 Safari/537.36"
)
FIREFOX_LINUX = "Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0"
SAFARI_IPHONE = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_1 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.1 Mobile/15E148 Safari/604.1"
)


class TestExtract:
    def test_chrome_on_windows(self):
        heuristic = FingerprintDeriver().extract(CHROME_WINDOWS)

        assert heuristic.browser == "Chrome"
        assert heuristic.browser_major == "120"
        assert heuristic.os == "Windows"
        assert heuristic.cpu_arch == "amd64"

    def test_firefox_on_linux(self):
        heuristic = FingerprintDeriver().extract(FIREFOX_LINUX)

        assert heuristic.browser == "Firefox"
        assert heuristic.browser_major == "121"
        assert heuristic.os == "Linux"
        assert heuristic.cpu_arch == "amd64"

    def test_unparsable_user_agent_is_all_unknown(self):
        assert FingerprintDeriver().extract("\x00garbage\x00") == ClientHeuristic()

    def test_empty_user_agent_is_all_unknown(self):
        assert FingerprintDeriver().extract("") == ClientHeuristic()
        assert FingerprintDeriver().extract(None) == ClientHeuristic()


class TestDeriveFingerprint:
    def test_hash_is_sixteen_hex_characters(self):
        assert re.fullmatch(r"[0-9a-f]{16}", derive_fingerprint(CHROME_WINDOWS))

    def test_deterministic(self):
        assert derive_fingerprint(SAFARI_IPHONE) == derive_fingerprint(SAFARI_IPHONE)

    def test_same_heuristic_tuple_gives_same_hash(self):
        assert derive_fingerprint(CHROME_WINDOWS) == derive_fingerprint(CHROME_WINDOWS_PATCHED)

    def test_different_devices_differ(self):
        assert derive_fingerprint(CHROME_WINDOWS) != derive_fingerprint(FIREFOX_LINUX)

    def test_unknown_bucket_is_shared(self):
        expected = hashlib.sha256(b"unknown|unknown|unknown|unknown|unknown").hexdigest()[:16]

        assert derive_fingerprint("") == expected
        assert derive_fingerprint(None) == expected
        assert derive_fingerprint("\x00garbage\x00") == expected

    def test_hash_covers_joined_fields(self):
        deriver = FingerprintDeriver()
        material = deriver.extract(FIREFOX_LINUX).material()

        assert material.count("|") == 4
        assert deriver.derive_fingerprint(FIREFOX_LINUX) == (
            hashlib.sha256(material.encode()).hexdigest()[:16]
        )


class TestCpuArchitecture:
    def test_known_architectures(self):
        assert detect_cpu_architecture("Linux aarch64") == "arm64"
        assert detect_cpu_architecture("Windows NT 6.1; WOW64") == "amd64"
        assert detect_cpu_architecture("X11; Linux i686") == "ia32"

    def test_unknown_architecture(self):
        assert detect_cpu_architecture("Mozilla/5.0") == "unknown"
