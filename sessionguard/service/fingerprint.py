from __future__ import annotations

import hashlib
import re
from dataclasses import astuple, dataclass
from typing import Optional

from user_agents import parse as parse_user_agent

UNKNOWN = "unknown"
FIELD_SEPARATOR = "|"
FINGERPRINT_LENGTH = 16

# ua-parser reports these when it cannot identify the component
_PLACEHOLDER_FAMILIES = {"", "other"}

# First match wins; broader patterns come last
_CPU_PATTERNS: tuple[tuple[re.Pattern[str], Optional[str]], ...] = (
    (re.compile(r"\b(?:amd|x|x86[-_]?|wow|win)64\b", re.I), "amd64"),
    (re.compile(r"ia32(?=;)|\b(?:i[3-6]|x)86\b", re.I), "ia32"),
    (re.compile(r"\b(?:aarch64|arm(?:v?8e?l?|_?64))\b", re.I), "arm64"),
    (re.compile(r"\barm(?:v[67])?ht?n?[fl]p?\b", re.I), "armhf"),
    (re.compile(r"windows (?:ce|mobile); ppc;", re.I), "arm"),
    (re.compile(r"(?:ppc|powerpc)(?:64)?(?: mac|;|\))", re.I), "ppc"),
    (re.compile(r"sun4\w[;)]", re.I), "sparc"),
    (re.compile(r"\barm(?=v(?:[1-7]|[5-7]1)l?|;|eabi)", re.I), "arm"),
    (re.compile(r"ia64(?=;)", re.I), "ia64"),
    (re.compile(r"68k(?=\))", re.I), "68k"),
    (re.compile(r"avr32|(?<=atmel )avr", re.I), "avr"),
    (re.compile(r"\b(?:irix|mips|sparc)(?:64)?\b", re.I), None),
    (re.compile(r"pa-risc", re.I), "pa-risc"),
)


@dataclass(frozen=True)
class ClientHeuristic:
    """Coarse device identity extracted from a user-agent string."""

    browser: str = UNKNOWN
    browser_major: str = UNKNOWN
    os: str = UNKNOWN
    os_version: str = UNKNOWN
    cpu_arch: str = UNKNOWN

    def material(self) -> str:
        return FIELD_SEPARATOR.join(astuple(self))


def _known(value: Optional[str]) -> str:
    if value is None:
        return UNKNOWN
    value = str(value).strip()
    if value.lower() in _PLACEHOLDER_FAMILIES:
        return UNKNOWN
    return value


def detect_cpu_architecture(user_agent: str) -> str:
    for pattern, arch in _CPU_PATTERNS:
        match = pattern.search(user_agent)
        if match:
            return arch or match.group(0).lower()
    return UNKNOWN


class FingerprintDeriver:
    """Turn a raw user-agent into a short, stable device hash.

    The hash only scopes a session to "this kind of device". Every client
    whose user-agent cannot be parsed lands in the same all-``unknown``
    bucket, so callers must not treat the value as a strong identity.
    """

    def extract(self, user_agent: Optional[str]) -> ClientHeuristic:
        if not user_agent:
            return ClientHeuristic()
        parsed = parse_user_agent(user_agent)
        browser = _known(parsed.browser.family)
        browser_version = parsed.browser.version
        os_family = _known(parsed.os.family)
        return ClientHeuristic(
            browser=browser,
            browser_major=(
                _known(str(browser_version[0]))
                if browser != UNKNOWN and browser_version
                else UNKNOWN
            ),
            os=os_family,
            os_version=(
                _known(parsed.os.version_string) if os_family != UNKNOWN else UNKNOWN
            ),
            cpu_arch=detect_cpu_architecture(user_agent),
        )

    def derive_fingerprint(self, user_agent: Optional[str]) -> str:
        material = self.extract(user_agent).material()
        return hashlib.sha256(material.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


_default_deriver = FingerprintDeriver()


def derive_fingerprint(user_agent: Optional[str]) -> str:
    """Fingerprint ``user_agent`` with the default deriver."""
    return _default_deriver.derive_fingerprint(user_agent)
