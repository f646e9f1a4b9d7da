"""
Credential handling for providers that accept user-supplied keys (BYOK).

- CredentialStore: user keys in the OS keyring, addressed by provider id
- CredentialResolver: decides, per provider, between system-held and
  user-supplied credentials
- probe_system_credentials(): checks which system-held credentials
  actually authenticate
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

import aiohttp
import google.auth
import google.auth.transport.requests
import keyring
from google.auth import exceptions as auth_exceptions
from keyring.backends import fail
from keyring.errors import KeyringError, PasswordDeleteError

from .config import API_URLS, get_mistral_api_key
from .exceptions import MissingUserCredential, NoCredentialsAvailable
from .registry import ProviderRegistry


KEYRING_SERVICE = "justocr"
STORAGE_KEY_PREFIX = "justocr_byok_"

# Shortest plausible key per provider; shorter input is a typo, not a key
MIN_KEY_LENGTH = {
    "mistral": 20,
    "google": 30,
}


class CredentialMode(Enum):
    SYSTEM_HELD = "system"
    USER_SUPPLIED = "user"


@dataclass(frozen=True)
class ResolvedCredentials:
    mode: CredentialMode
    key: Optional[str] = None


def storage_key(provider_id: str) -> str:
    """Where a provider's user key lives; depends on the id alone."""
    return f"{STORAGE_KEY_PREFIX}{provider_id}"


def mask_api_key(key: str) -> str:
    """Show only the first and last 4 characters of a key."""
    if len(key) <= 12:
        return "*" * len(key)
    return f"{key[:4]}{'*' * (len(key) - 8)}{key[-4:]}"


def validate_api_key_format(provider_id: str, key: str) -> Optional[str]:
    """Return a hint when a key is obviously malformed, else None."""
    key = key.strip()
    if not key:
        return "API key is required"
    min_length = MIN_KEY_LENGTH.get(provider_id)
    if min_length and len(key) < min_length:
        return f"API key looks too short for {ProviderRegistry.display_name(provider_id)}"
    return None


class CredentialStore:
    """
    User keys in the OS keyring.

    Without a usable keyring backend every operation is a no-op and
    lookups return None.
    """

    def __init__(self, service: str = KEYRING_SERVICE):
        self.service = service

    def is_persistent(self) -> bool:
        return not isinstance(keyring.get_keyring(), fail.Keyring)

    def get(self, provider_id: str) -> Optional[str]:
        if not self.is_persistent():
            return None
        try:
            value = keyring.get_password(self.service, storage_key(provider_id))
        except KeyringError as e:
            logging.warning(f"Could not read stored key for {provider_id}: {e}")
            return None
        return value or None

    def store(self, provider_id: str, key: str) -> bool:
        """
        Save a user key. Returns False when nothing was persisted.

        Raises:
            ValueError: if the key is obviously malformed
        """
        problem = validate_api_key_format(provider_id, key)
        if problem:
            raise ValueError(problem)
        if not self.is_persistent():
            return False
        try:
            keyring.set_password(self.service, storage_key(provider_id), key.strip())
        except KeyringError as e:
            logging.warning(f"Could not store key for {provider_id}: {e}")
            return False
        logging.info(f"Stored API key for {provider_id}")
        return True

    def remove(self, provider_id: str) -> None:
        if not self.is_persistent():
            return
        try:
            keyring.delete_password(self.service, storage_key(provider_id))
        except PasswordDeleteError:
            pass
        except KeyringError as e:
            logging.warning(f"Could not remove key for {provider_id}: {e}")

    def has(self, provider_id: str) -> bool:
        return self.get(provider_id) is not None


class MemoryCredentialStore(CredentialStore):
    """Session-only store, used where keys must not outlive the process."""

    def __init__(self, keys: Optional[Dict[str, str]] = None):
        super().__init__()
        self._keys: Dict[str, str] = dict(keys or {})

    def is_persistent(self) -> bool:
        return False

    def get(self, provider_id: str) -> Optional[str]:
        return self._keys.get(provider_id) or None

    def store(self, provider_id: str, key: str) -> bool:
        problem = validate_api_key_format(provider_id, key)
        if problem:
            raise ValueError(problem)
        self._keys[provider_id] = key.strip()
        return True

    def remove(self, provider_id: str) -> None:
        self._keys.pop(provider_id, None)


@dataclass
class CredentialResolver:
    """
    Per-provider credential decision for one session.

    availability holds the result of the system credential probe; modes
    holds explicit user choices. A provider with no explicit choice uses
    system-held credentials when they are available.
    """
    store: CredentialStore = field(default_factory=CredentialStore)
    availability: Dict[str, bool] = field(default_factory=dict)
    modes: Dict[str, CredentialMode] = field(default_factory=dict)
    registry: type = ProviderRegistry

    def system_available(self, provider_id: str) -> bool:
        return bool(self.availability.get(provider_id))

    def default_mode(self, provider_id: str) -> CredentialMode:
        if self.system_available(provider_id):
            return CredentialMode.SYSTEM_HELD
        return CredentialMode.USER_SUPPLIED

    def mode_for(self, provider_id: str) -> CredentialMode:
        return self.modes.get(provider_id) or self.default_mode(provider_id)

    def set_mode(self, provider_id: str, mode: CredentialMode) -> None:
        self.modes[provider_id] = mode

    def resolve(self, provider_id: str) -> ResolvedCredentials:
        """
        Raises:
            UnknownProvider: if the id is not registered
            NoCredentialsAvailable: system-held mode without system credentials
            MissingUserCredential: user-supplied mode with no stored key
        """
        descriptor = self.registry.descriptor(provider_id)
        if not descriptor.accepts_user_credentials:
            return ResolvedCredentials(CredentialMode.SYSTEM_HELD)

        mode = self.mode_for(provider_id)
        if mode is CredentialMode.SYSTEM_HELD:
            if not self.system_available(provider_id):
                raise NoCredentialsAvailable(provider_id)
            return ResolvedCredentials(CredentialMode.SYSTEM_HELD)

        key = self.store.get(provider_id)
        if not key:
            raise MissingUserCredential(provider_id)
        return ResolvedCredentials(CredentialMode.USER_SUPPLIED, key)


async def _probe_mistral(timeout_s: float) -> bool:
    key = get_mistral_api_key()
    if not key:
        return False

    timeout = aiohttp.ClientTimeout(total=timeout_s)
    try:
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(API_URLS.MISTRAL_MODELS, headers={"Authorization": f"Bearer {key}"}) as response:
                if response.status != 200:
                    logging.warning(f"Mistral credential check failed: HTTP {response.status}")
                return response.status == 200
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        logging.warning(f"Mistral credential check failed: {e}")
        return False


def check_google_credentials() -> bool:
    """True when application default credentials exist and can be refreshed."""
    try:
        credentials, project = google.auth.default(scopes=[API_URLS.GOOGLE_VISION_SCOPE])
        credentials.refresh(google.auth.transport.requests.Request())
        logging.debug(f"Google credentials available for project: {project}")
        return True
    except (auth_exceptions.DefaultCredentialsError, auth_exceptions.RefreshError,
            auth_exceptions.TransportError) as e:
        logging.info(f"Google Cloud credentials not available: {e}")
        return False


async def probe_system_credentials(timeout_s: float = 10.0) -> Dict[str, bool]:
    """
    Which credential-gated providers have working system-held credentials.

    A key that is present but rejected counts as unavailable.
    """
    loop = asyncio.get_running_loop()
    mistral, google_ok = await asyncio.gather(
        _probe_mistral(timeout_s),
        loop.run_in_executor(None, check_google_credentials),
    )
    return {"mistral": mistral, "google": google_ok}


__all__ = [
    'KEYRING_SERVICE',
    'STORAGE_KEY_PREFIX',
    'CredentialMode',
    'ResolvedCredentials',
    'storage_key',
    'mask_api_key',
    'validate_api_key_format',
    'CredentialStore',
    'MemoryCredentialStore',
    'CredentialResolver',
    'check_google_credentials',
    'probe_system_credentials',
]
