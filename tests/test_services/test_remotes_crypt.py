"""Tests for remote CRUD and crypt remotes."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from syncboard.exceptions import (
    AlreadyExistsError,
    ErrorCode,
    NotFoundError,
    TransferEngineError,
    ValidationError,
)
from syncboard.schemas.remote import CryptRemoteConfig
from syncboard.services.crypt_service import CryptService
from syncboard.services.event_bus import EventType
from syncboard.services.remote_service import RemoteService, describe_remote_type

if TYPE_CHECKING:
    from syncboard.services.event_bus import EventBus
    from tests.conftest import EventRecorder, FakeTransferEngine


@pytest.fixture
def remotes(fake_engine: FakeTransferEngine, event_bus: EventBus) -> RemoteService:
    return RemoteService(fake_engine, event_bus)


@pytest.fixture
def crypt(fake_engine: FakeTransferEngine, event_bus: EventBus) -> CryptService:
    return CryptService(fake_engine, event_bus)


def crypt_config(**kwargs: object) -> CryptRemoteConfig:
    values: dict[str, object] = {
        "name": "secret",
        "wrapped_remote": "gdrive:vault",
        "password": "hunter2",
    }
    values.update(kwargs)
    return CryptRemoteConfig(**values)


class TestRemoteService:
    async def test_add_and_list(
        self,
        remotes: RemoteService,
        fake_engine: FakeTransferEngine,
        events: EventRecorder,
    ) -> None:
        remote = await remotes.add_remote("gdrive", "drive", {"scope": "drive"})

        assert remote.description == "Google Drive"
        listed = await remotes.get_remotes()
        assert [r.name for r in listed] == ["gdrive"]
        assert listed[0].description == "Google Drive"
        assert fake_engine.init_calls == 1
        added = events.of_type(EventType.REMOTE_ADDED)
        assert added[0]["remoteName"] == "gdrive"

    def test_unknown_type_description(self) -> None:
        assert describe_remote_type("azureblob") == "Remote type: azureblob"

    async def test_add_validates(self, remotes: RemoteService) -> None:
        with pytest.raises(ValidationError):
            await remotes.add_remote("bad name", "drive", {})
        with pytest.raises(ValidationError, match="remote type cannot be empty"):
            await remotes.add_remote("gdrive", "", {})

    async def test_add_duplicate(self, remotes: RemoteService) -> None:
        await remotes.add_remote("gdrive", "drive", {})
        with pytest.raises(AlreadyExistsError):
            await remotes.add_remote("gdrive", "s3", {})

    async def test_engine_failure_is_wrapped(
        self, remotes: RemoteService, fake_engine: FakeTransferEngine
    ) -> None:
        fake_engine.failures.add("gdrive")
        with pytest.raises(TransferEngineError, match="failed to create remote"):
            await remotes.add_remote("gdrive", "drive", {})

    async def test_update(self, remotes: RemoteService, fake_engine: FakeTransferEngine) -> None:
        await remotes.add_remote("s3", "s3", {"region": "eu-west-1"})
        updated = await remotes.update_remote("s3", {"region": "us-east-1"})
        assert updated.type == "s3"
        assert fake_engine.remotes["s3"].config["region"] == "us-east-1"
        with pytest.raises(NotFoundError):
            await remotes.update_remote("missing", {})

    async def test_get_remote(self, remotes: RemoteService) -> None:
        await remotes.add_remote("box", "box", {})
        assert (await remotes.get_remote("box")).description == "Box"
        with pytest.raises(NotFoundError):
            await remotes.get_remote("nope")

    async def test_delete_runs_hooks(
        self,
        remotes: RemoteService,
        fake_engine: FakeTransferEngine,
        events: EventRecorder,
    ) -> None:
        scrubbed: list[str] = []

        async def record(name: str) -> None:
            scrubbed.append(name)

        async def explode(name: str) -> None:
            raise RuntimeError(f"cleanup of {name} failed")

        remotes.add_deletion_hook(explode)
        remotes.add_deletion_hook(record)
        await remotes.add_remote("gdrive", "drive", {})

        await remotes.delete_remote("gdrive")

        assert "gdrive" not in fake_engine.remotes
        assert scrubbed == ["gdrive"]
        assert events.of_type(EventType.REMOTE_DELETED)[0]["remoteName"] == "gdrive"

    async def test_delete_missing(self, remotes: RemoteService) -> None:
        with pytest.raises(NotFoundError):
            await remotes.delete_remote("ghost")

    async def test_connection_test(
        self, remotes: RemoteService, fake_engine: FakeTransferEngine
    ) -> None:
        await remotes.add_remote("flaky", "webdav", {})
        await remotes.test_remote("flaky")

        fake_engine.failures.add("flaky")
        with pytest.raises(TransferEngineError) as exc_info:
            await remotes.test_remote("flaky")
        assert exc_info.value.code == ErrorCode.TRANSFER_ENGINE_ERROR
        assert "connection test failed" in str(exc_info.value)

        with pytest.raises(NotFoundError):
            await remotes.test_remote("ghost")


class TestCryptService:
    async def test_create(
        self,
        crypt: CryptService,
        fake_engine: FakeTransferEngine,
        events: EventRecorder,
    ) -> None:
        await crypt.create_crypt_remote(crypt_config(password2="salt", directory_encrypt=False))

        remote = fake_engine.remotes["secret"]
        assert remote.type == "crypt"
        assert remote.config == {
            "remote": "gdrive:vault",
            "password": "hunter2",
            "password2": "salt",
            "filename_encryption": "standard",
            "directory_name_encryption": "false",
        }
        created = events.of_type(EventType.CRYPT_REMOTE_CREATED)[0]
        assert created["remoteName"] == "secret"
        assert "password" not in created["data"]
        assert "password2" not in created["data"]

    @pytest.mark.parametrize("mode", ["standard", "obfuscate", "off"])
    async def test_filename_modes(
        self, crypt: CryptService, fake_engine: FakeTransferEngine, mode: str
    ) -> None:
        await crypt.create_crypt_remote(crypt_config(filename_encrypt=mode))
        assert fake_engine.remotes["secret"].config["filename_encryption"] == mode

    async def test_empty_mode_defaults_to_standard(
        self, crypt: CryptService, fake_engine: FakeTransferEngine
    ) -> None:
        await crypt.create_crypt_remote(crypt_config(filename_encrypt=""))
        assert fake_engine.remotes["secret"].config["filename_encryption"] == "standard"

    @pytest.mark.parametrize(
        ("kwargs", "message"),
        [
            ({"name": ""}, "crypt remote name cannot be empty"),
            ({"wrapped_remote": ""}, "wrapped remote path cannot be empty"),
            ({"password": ""}, "encryption password cannot be empty"),
            ({"filename_encrypt": "rot13"}, "invalid filename encryption mode"),
        ],
    )
    async def test_create_validation(
        self, crypt: CryptService, kwargs: dict[str, object], message: str
    ) -> None:
        with pytest.raises(ValidationError, match=message):
            await crypt.create_crypt_remote(crypt_config(**kwargs))

    async def test_existing_name(
        self, crypt: CryptService, fake_engine: FakeTransferEngine
    ) -> None:
        await fake_engine.create_remote("secret", "s3", {})
        with pytest.raises(AlreadyExistsError):
            await crypt.create_crypt_remote(crypt_config())

    async def test_delete(
        self,
        crypt: CryptService,
        fake_engine: FakeTransferEngine,
        events: EventRecorder,
    ) -> None:
        await crypt.create_crypt_remote(crypt_config())
        await crypt.delete_crypt_remote("secret")
        assert "secret" not in fake_engine.remotes
        assert events.types()[-1] == EventType.CRYPT_REMOTE_DELETED

    async def test_delete_rejects_missing_and_plain_remotes(
        self, crypt: CryptService, fake_engine: FakeTransferEngine
    ) -> None:
        with pytest.raises(NotFoundError):
            await crypt.delete_crypt_remote("ghost")
        await fake_engine.create_remote("bucket", "s3", {})
        with pytest.raises(ValidationError, match=r"is not a crypt remote \(type: s3\)"):
            await crypt.delete_crypt_remote("bucket")
        assert "bucket" in fake_engine.remotes

    async def test_list(self, crypt: CryptService, fake_engine: FakeTransferEngine) -> None:
        await fake_engine.create_remote("bucket", "s3", {})
        await crypt.create_crypt_remote(crypt_config(name="vault"))
        await crypt.create_crypt_remote(crypt_config(name="archive"))
        assert sorted(await crypt.list_crypt_remotes()) == ["archive", "vault"]
