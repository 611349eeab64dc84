"""
Partner Profile Manager — Saved partner sign-in details for repeat runs.

Profiles live in ``~/.safelist_sync/profiles.json``. Each one names the
partner tenant, the app registration used to sign in, and the sign-in
method (device code or certificate). ``--profile <name>`` selects one;
otherwise the default profile is used.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger("safelist_sync.profiles")

_CONFIG_DIR = Path.home() / ".safelist_sync"
_PROFILES_FILE = _CONFIG_DIR / "profiles.json"

AUTH_MODES = ("delegated", "certificate")
DEFAULT_CERT_PATH = "./base64.txt"


@dataclass
class PartnerProfile:
    """Sign-in details for one partner."""
    name: str                          # Short handle, e.g. "contoso-csp"
    tenant_id: str                     # Partner tenant ID or primary domain
    client_id: str                     # App registration client ID
    auth_mode: str = "delegated"
    cert_path: str = DEFAULT_CERT_PATH # certificate mode only
    username: str = ""                 # UPN hint, delegated mode only
    display_name: str = ""
    notes: str = ""

    @classmethod
    def from_dict(cls, name: str, data: dict) -> "PartnerProfile":
        mode = data.get("auth_mode", "delegated")
        if mode not in AUTH_MODES:
            raise ValueError(f"profile '{name}' has unknown auth_mode '{mode}'")
        return cls(
            name=name,
            tenant_id=data["tenant_id"],
            client_id=data["client_id"],
            auth_mode=mode,
            cert_path=data.get("cert_path") or DEFAULT_CERT_PATH,
            username=data.get("username", ""),
            display_name=data.get("display_name", ""),
            notes=data.get("notes", ""),
        )

    def resolve_cert_path(self) -> str:
        """Certificate path with ~ expanded and relative paths anchored at cwd."""
        cert = Path(self.cert_path).expanduser()
        return str(cert if cert.is_absolute() else Path.cwd() / cert)

    def to_dict(self) -> dict:
        data = asdict(self)
        del data["name"]
        return data


@dataclass
class ProfileStore:
    """The on-disk collection of partner profiles."""
    profiles: dict[str, PartnerProfile] = field(default_factory=dict)
    default_profile: str = ""
    path: Path = _PROFILES_FILE

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "ProfileStore":
        """Read the store; a missing or unreadable file yields an empty one."""
        store = cls(path=Path(path) if path else _PROFILES_FILE)
        if not store.path.exists():
            return store
        try:
            raw = json.loads(store.path.read_text(encoding="utf-8"))
            profiles = {
                name: PartnerProfile.from_dict(name, entry)
                for name, entry in raw.get("profiles", {}).items()
            }
        except (json.JSONDecodeError, KeyError, ValueError) as e:
            logger.warning(f"Ignoring unreadable profile file {store.path}: {e}")
            return store
        store.profiles = profiles
        store.default_profile = raw.get("default_profile", "")
        return store

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "default_profile": self.default_profile,
            "profiles": {name: p.to_dict() for name, p in self.profiles.items()},
        }
        self.path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")

    def add(self, profile: PartnerProfile, set_default: bool = False) -> None:
        """Insert or replace a profile. The first profile added becomes the default."""
        self.profiles[profile.name] = profile
        if set_default or not self.default_profile:
            self.default_profile = profile.name
        self.save()

    def remove(self, name: str) -> bool:
        if self.profiles.pop(name, None) is None:
            return False
        if self.default_profile == name:
            self.default_profile = next(iter(self.profiles), "")
        self.save()
        return True

    def get(self, name: str) -> Optional[PartnerProfile]:
        """Case-insensitive lookup."""
        wanted = name.lower()
        return next(
            (p for key, p in self.profiles.items() if key.lower() == wanted), None
        )

    def get_default(self) -> Optional[PartnerProfile]:
        if self.default_profile in self.profiles:
            return self.profiles[self.default_profile]
        return next(iter(self.profiles.values()), None)

    def set_default(self, name: str) -> bool:
        if name not in self.profiles:
            return False
        self.default_profile = name
        self.save()
        return True

    def list_profiles(self) -> list[PartnerProfile]:
        return sorted(self.profiles.values(), key=lambda p: p.name)


def resolve_profile(
    profile_name: Optional[str] = None,
    path: Optional[Path] = None,
) -> Optional[PartnerProfile]:
    """Named profile if `profile_name` is given, else the default; None when absent."""
    store = ProfileStore.load(path)
    return store.get(profile_name) if profile_name else store.get_default()
