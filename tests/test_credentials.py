import google.auth
import keyring
import pytest
from aiohttp import web
from google.auth import exceptions as auth_exceptions
from keyring.backend import KeyringBackend
from keyring.backends import fail
from keyring.errors import PasswordDeleteError

from justocr import credentials as credentials_module
from justocr.config import API_URLS
from justocr.credentials import (
    CredentialMode,
    CredentialResolver,
    CredentialStore,
    MemoryCredentialStore,
    check_google_credentials,
    mask_api_key,
    probe_system_credentials,
    storage_key,
    validate_api_key_format,
)
from justocr.exceptions import MissingUserCredential, NoCredentialsAvailable, UnknownProvider

from helpers import serve


MISTRAL_KEY = "m" * 32
GOOGLE_KEY = "AIza" + "g" * 35


class DictKeyring(KeyringBackend):
    priority = 1

    def __init__(self):
        super().__init__()
        self.passwords = {}

    def get_password(self, service, username):
        return self.passwords.get((service, username))

    def set_password(self, service, username, password):
        self.passwords[(service, username)] = password

    def delete_password(self, service, username):
        if (service, username) not in self.passwords:
            raise PasswordDeleteError("not found")
        del self.passwords[(service, username)]


@pytest.fixture()
def dict_keyring():
    previous = keyring.get_keyring()
    backend = DictKeyring()
    keyring.set_keyring(backend)
    yield backend
    keyring.set_keyring(previous)


@pytest.fixture()
def no_keyring():
    previous = keyring.get_keyring()
    keyring.set_keyring(fail.Keyring())
    yield
    keyring.set_keyring(previous)


class TestKeyHelpers:
    def test_storage_key_depends_only_on_id(self) -> None:
        assert storage_key("mistral") == "justocr_byok_mistral"
        assert storage_key("mistral") == storage_key("mistral")

    def test_mask_long_key(self) -> None:
        assert mask_api_key("abcd1234567890wxyz") == "abcd" + "*" * 10 + "wxyz"

    def test_mask_short_key_fully(self) -> None:
        assert mask_api_key("short-key") == "*********"

    def test_format_hints(self) -> None:
        assert validate_api_key_format("mistral", "") == "API key is required"
        assert validate_api_key_format("mistral", "too-short") is not None
        assert validate_api_key_format("mistral", MISTRAL_KEY) is None
        assert validate_api_key_format("google", "x" * 25) is not None
        assert validate_api_key_format("google", GOOGLE_KEY) is None


class TestCredentialStore:
    def test_store_and_get(self, dict_keyring) -> None:
        store = CredentialStore()
        assert store.store("mistral", MISTRAL_KEY)
        assert store.get("mistral") == MISTRAL_KEY
        assert dict_keyring.passwords[("justocr", "justocr_byok_mistral")] == MISTRAL_KEY

    def test_remove(self, dict_keyring) -> None:
        store = CredentialStore()
        store.store("google", GOOGLE_KEY)
        store.remove("google")
        assert store.get("google") is None
        store.remove("google")

    def test_rejects_malformed_key(self, dict_keyring) -> None:
        with pytest.raises(ValueError):
            CredentialStore().store("mistral", "abc")

    def test_without_backend_everything_is_a_no_op(self, no_keyring) -> None:
        store = CredentialStore()
        assert not store.is_persistent()
        assert store.store("mistral", MISTRAL_KEY) is False
        assert store.get("mistral") is None
        store.remove("mistral")

    def test_memory_store(self) -> None:
        store = MemoryCredentialStore({"mistral": MISTRAL_KEY})
        assert store.get("mistral") == MISTRAL_KEY
        store.remove("mistral")
        assert not store.has("mistral")


class TestCredentialResolver:
    def test_provider_without_user_keys_is_system_held(self) -> None:
        resolved = CredentialResolver(store=MemoryCredentialStore()).resolve("tesseract")
        assert resolved.mode is CredentialMode.SYSTEM_HELD
        assert resolved.key is None

    def test_default_mode_follows_availability(self) -> None:
        resolver = CredentialResolver(store=MemoryCredentialStore(), availability={"mistral": True})
        assert resolver.mode_for("mistral") is CredentialMode.SYSTEM_HELD
        assert resolver.mode_for("google") is CredentialMode.USER_SUPPLIED

    def test_system_held_when_available(self) -> None:
        resolver = CredentialResolver(store=MemoryCredentialStore(), availability={"google": True})
        assert resolver.resolve("google").mode is CredentialMode.SYSTEM_HELD

    def test_system_held_without_availability(self) -> None:
        resolver = CredentialResolver(
            store=MemoryCredentialStore(),
            modes={"mistral": CredentialMode.SYSTEM_HELD},
        )
        with pytest.raises(NoCredentialsAvailable):
            resolver.resolve("mistral")

    def test_user_supplied_with_key(self) -> None:
        resolver = CredentialResolver(store=MemoryCredentialStore({"mistral": MISTRAL_KEY}))
        resolved = resolver.resolve("mistral")
        assert resolved.mode is CredentialMode.USER_SUPPLIED
        assert resolved.key == MISTRAL_KEY

    def test_user_supplied_without_key(self) -> None:
        resolver = CredentialResolver(store=MemoryCredentialStore())
        with pytest.raises(MissingUserCredential, match="API key is required for provider: mistral"):
            resolver.resolve("mistral")

    def test_explicit_user_mode_overrides_availability(self) -> None:
        resolver = CredentialResolver(store=MemoryCredentialStore(), availability={"mistral": True})
        resolver.set_mode("mistral", CredentialMode.USER_SUPPLIED)
        with pytest.raises(MissingUserCredential):
            resolver.resolve("mistral")

    def test_unknown_provider(self) -> None:
        with pytest.raises(UnknownProvider):
            CredentialResolver(store=MemoryCredentialStore()).resolve("nope")


class TestProbe:
    async def test_nothing_configured(self, monkeypatch) -> None:
        monkeypatch.delenv("MISTRAL_API_KEY", raising=False)
        monkeypatch.setattr(credentials_module, "check_google_credentials", lambda: False)
        assert await probe_system_credentials() == {"mistral": False, "google": False}

    async def test_mistral_key_must_authenticate(self, monkeypatch) -> None:
        async def models(request):
            if request.headers.get("Authorization") == "Bearer good-key":
                return web.json_response({"data": []})
            return web.json_response({"message": "Unauthorized"}, status=401)

        app = web.Application()
        app.router.add_get("/v1/models", models)
        monkeypatch.setattr(credentials_module, "check_google_credentials", lambda: False)

        async with serve(app) as server:
            monkeypatch.setattr(API_URLS, "MISTRAL_MODELS", str(server.make_url("/v1/models")))

            monkeypatch.setenv("MISTRAL_API_KEY", "good-key")
            assert (await probe_system_credentials())["mistral"] is True

            monkeypatch.setenv("MISTRAL_API_KEY", "revoked-key")
            assert (await probe_system_credentials())["mistral"] is False

    def test_google_without_default_credentials(self, monkeypatch) -> None:
        def no_credentials(scopes=None):
            raise auth_exceptions.DefaultCredentialsError("Could not automatically determine credentials")

        monkeypatch.setattr(google.auth, "default", no_credentials)
        assert check_google_credentials() is False

    def test_google_with_refreshable_credentials(self, monkeypatch) -> None:
        class Credentials:
            def refresh(self, request):
                self.refreshed = True

        monkeypatch.setattr(google.auth, "default", lambda scopes=None: (Credentials(), "demo-project"))
        assert check_google_credentials() is True
