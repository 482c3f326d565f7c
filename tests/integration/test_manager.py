"""
Integration tests for CertificateAuthorityManager.

Tests cover:
  - registration of created and opened CAs
  - refusal of a second registration of the same directory or CA UUID
  - forwarding of CA events and registry change events
  - locking on removal and when the last subscriber leaves

Markers: @pytest.mark.integration — needs only the filesystem.
"""

from __future__ import annotations

import shutil
from collections.abc import Iterator
from pathlib import Path

import pytest

from ca_manager.authority import CertificateAuthority
from ca_manager.config import AppSettings
from ca_manager.domain.assertions import ResultAssertions
from ca_manager.domain.events import CaProperty, PropertyChangeEvent
from ca_manager.domain.failure import CaError
from ca_manager.manager import CertificateAuthorityManager
from tests.conftest import PASSPHRASE, make_ca_certificate

pytestmark = pytest.mark.integration


@pytest.fixture()
def manager() -> Iterator[CertificateAuthorityManager]:
    registry = CertificateAuthorityManager(AppSettings(_env_file=None, default_expiry_days=30))
    yield registry
    registry.close()


def _new_directory(tmp_path: Path, name: str) -> Path:
    path = tmp_path / name
    path.mkdir()
    return path


@pytest.fixture()
def created(manager: CertificateAuthorityManager, tmp_path: Path) -> CertificateAuthority:
    path = _new_directory(tmp_path, "first")
    return ResultAssertions.assert_success(manager.create(path, make_ca_certificate(), "First"))


class TestRegistration:
    def test_create_registers_with_app_defaults(self, manager: CertificateAuthorityManager, created):
        assert manager.certificate_authorities == (created,)
        assert manager.get(created.certificate_authority_id) is created
        assert created.expiry_days == 30
        assert not created.is_locked

    def test_same_directory_twice(self, manager: CertificateAuthorityManager, created):
        ResultAssertions.assert_failure(manager.open(created.base_path), CaError.IO_FAILURE)
        ResultAssertions.assert_failure(
            manager.create(created.base_path, make_ca_certificate()), CaError.IO_FAILURE
        )
        assert len(manager.certificate_authorities) == 1

    def test_same_uuid_from_another_directory(
        self, manager: CertificateAuthorityManager, created, tmp_path: Path
    ):
        """
        GIVEN a registered CA and a byte-for-byte copy of its directory
        WHEN the copy is opened
        THEN it is refused, since both carry the same CA UUID.
        """
        copy = tmp_path / "copy"
        shutil.copytree(created.base_path, copy)
        result = manager.open(copy)
        ResultAssertions.assert_failure(result, CaError.IO_FAILURE)
        ResultAssertions.assert_failure_message_contains(result, "already open from another path")
        assert manager.certificate_authorities == (created,)

    def test_open_starts_locked(self, manager: CertificateAuthorityManager, tmp_path: Path):
        path = _new_directory(tmp_path, "offline")
        standalone = ResultAssertions.assert_success(CertificateAuthority.create(path, make_ca_certificate()))
        standalone.close()

        opened = ResultAssertions.assert_success(manager.open(path))
        assert opened.is_locked
        assert manager.get(opened.certificate_authority_id) is opened

    def test_open_missing_directory(self, manager: CertificateAuthorityManager, tmp_path: Path):
        ResultAssertions.assert_failure(manager.open(tmp_path / "absent"), CaError.IO_FAILURE)
        ResultAssertions.assert_failure(manager.open(None), CaError.IO_FAILURE)
        assert manager.certificate_authorities == ()


class TestEvents:
    def test_registry_and_forwarded_events(self, manager: CertificateAuthorityManager, tmp_path: Path):
        events: list[PropertyChangeEvent] = []
        manager.subscribe(events.append)

        ca = ResultAssertions.assert_success(
            manager.create(_new_directory(tmp_path, "ca"), make_ca_certificate(), "Forwarded")
        )
        ResultAssertions.assert_success(ca.set_description("Renamed"))
        assert manager.remove(ca) is True

        assert [e.property for e in events] == [
            CaProperty.CERTIFICATE_AUTHORITIES,
            CaProperty.DESCRIPTION,
            CaProperty.UNLOCKED,
            CaProperty.CERTIFICATE_AUTHORITIES,
        ]
        assert events[0].new_value == (ca,)
        assert events[1].source is ca
        assert events[-1].old_value == (ca,) and events[-1].new_value == ()

    def test_removed_ca_is_locked_and_silent(self, manager: CertificateAuthorityManager, created):
        events: list[PropertyChangeEvent] = []
        manager.subscribe(events.append)
        manager.remove(created)
        events.clear()

        assert created.is_locked
        ResultAssertions.assert_success(created.set_description("Ignored"))
        assert events == []
        assert manager.remove(created) is False

    def test_last_subscriber_leaving_locks_every_ca(
        self, manager: CertificateAuthorityManager, created, tmp_path: Path
    ):
        """
        GIVEN two subscribers and an unlocked CA
        WHEN both unsubscribe
        THEN the CA stays unlocked after the first and is locked after the last.
        """
        first = manager.subscribe(lambda e: None)
        second = manager.subscribe(lambda e: None)

        assert manager.unsubscribe(first) is True
        assert not created.is_locked
        assert manager.unsubscribe(second) is True
        assert created.is_locked
        assert manager.unsubscribe(second) is False

        ResultAssertions.assert_success(created.unlock(PASSPHRASE))
        assert not created.is_locked

    def test_listener_exception_propagates(self, manager: CertificateAuthorityManager, created):
        def failing(event: PropertyChangeEvent) -> None:
            raise RuntimeError("listener failed")

        handle = manager.subscribe(failing)
        with pytest.raises(RuntimeError, match="listener failed"):
            created.set_expiry_days(10)
        assert created.expiry_days == 10
        manager.unsubscribe(handle)
