"""
Integration tests for CertificateAuthority against a CA directory on disk.

Every test creates a real CA in tmp_path (EC keys, PKCS#12 keystore) and
drives it through the public operations, asserting on returned Results,
emitted events and the files left behind.

BDD-style docstrings describe the scenarios.

Markers: @pytest.mark.integration — needs only the filesystem.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from datetime import timedelta
from pathlib import Path

import pytest
from cryptography import x509

from ca_manager.adapters import certificate_factory, codecs
from ca_manager.adapters.issued_certificate import IssuedCertificate
from ca_manager.authority import (
    ISSUED_PATH,
    REQUESTS_PATH,
    REVOKED_PATH,
    TEMPLATES_PATH,
    X509CRL_PATH,
    CertificateAuthority,
)
from ca_manager.domain.assertions import ResultAssertions
from ca_manager.domain.enums import EncodingType, KeyType, PKCS8Cipher, RevokeReasonCode, SignatureAlgorithm
from ca_manager.domain.events import CaProperty, PropertyChangeEvent
from ca_manager.domain.failure import CaError
from ca_manager.domain.models import CertificateKeyPairTemplate, utc_now
from ca_manager.properties import ArtifactLocator, IssuedCertificateProperties
from ca_manager.settings import SETTINGS_FILENAME, CertificateAuthoritySettings
from tests.conftest import PASSPHRASE, make_ca_certificate, make_leaf_request, name, validity

pytestmark = pytest.mark.integration


# ── Helpers ──────────────────────────────────────────────────────────────────


def _record(ca: CertificateAuthority) -> list[PropertyChangeEvent]:
    events: list[PropertyChangeEvent] = []
    ca.subscribe(events.append)
    return events


def _issue(ca: CertificateAuthority, subject: str = "MySubjectCert", password: str | None = PASSPHRASE):
    start, end = validity()
    return ResultAssertions.assert_success(
        ca.sign_and_store_certificate_request(make_leaf_request(subject), start, end, password)
    )


@pytest.fixture()
def p521_authority(tmp_path: Path) -> Iterator[CertificateAuthority]:
    base = tmp_path / "p521"
    base.mkdir()
    issuer = make_ca_certificate(KeyType.EC_P521, subject="My Root")
    ca = ResultAssertions.assert_success(CertificateAuthority.create(base, issuer))
    ResultAssertions.assert_success(ca.set_incremental_serial(True))
    yield ca
    ca.close()


# ═══════════════════════════════════════════════════════════════
# 1. End-to-end scenario
# ═══════════════════════════════════════════════════════════════


class TestIssueRevokePublish:
    def test_sign_revoke_and_publish_crl(self, p521_authority: CertificateAuthority, tmp_path: Path):
        """
        GIVEN a new EC P-521 CA described as "My CA" and unlocked
        WHEN a certificate is signed, revoked with CA_COMPROMISE and a CRL is issued
        THEN the collections move the entry from Issued to Revoked
         AND the CRL read back as PEM and as DER equals the CRL issued.
        """
        ca = p521_authority
        ResultAssertions.assert_success(ca.set_description("My CA"))
        ResultAssertions.assert_success(ca.unlock(PASSPHRASE))
        events = _record(ca)

        start, end = validity(10, 360)
        issued = ResultAssertions.assert_success(
            ca.sign_and_store_certificate_request(
                make_leaf_request("MySubjectCert", KeyType.EC_P521), start, end, PASSPHRASE
            )
        )
        certificate = issued.load_certificate(PASSPHRASE)
        assert len(ca.issued_certificates) == 1
        assert certificate.serial_number == ca.peek_next_serial_number() - 1
        assert certificate.subject == name("MySubjectCert")
        assert issued.path == ca.generate_filename(certificate.serial_number, ISSUED_PATH, ".prop")

        revoked = ResultAssertions.assert_success(ca.revoke_certificate(issued, reason=RevokeReasonCode.CA_COMPROMISE))
        assert ca.issued_certificates == ()
        assert ca.revoked_certificates == (revoked,)
        assert revoked.revoke_code is RevokeReasonCode.CA_COMPROMISE
        assert (ca.base_path / REVOKED_PATH / revoked.store_filename).is_file()
        assert not (ca.base_path / ISSUED_PATH / revoked.store_filename).exists()

        crl_properties = ResultAssertions.assert_success(ca.create_crl(utc_now() + timedelta(seconds=3600)))
        crl = crl_properties.load_crl()
        entry = crl.get_revoked_certificate_by_serial_number(certificate.serial_number)
        assert entry is not None
        assert entry.extensions.get_extension_for_class(x509.CRLReason).value.reason is x509.ReasonFlags.ca_compromise

        pem_file = tmp_path / "ca.crl.pem"
        der_file = tmp_path / "ca.crl.der"
        pem_file.write_bytes(codecs.encode_crl(crl, EncodingType.PEM))
        der_file.write_bytes(codecs.encode_crl(crl, EncodingType.DER))
        assert codecs.load_crl(pem_file.read_bytes()) == crl
        assert codecs.load_crl(der_file.read_bytes()) == crl
        assert codecs.load_crl((ca.base_path / X509CRL_PATH / "0000000000000001.crl").read_bytes()) == crl

        assert [e.property for e in events] == [
            CaProperty.ISSUED,
            CaProperty.ISSUED,
            CaProperty.REVOKED,
            CaProperty.CRLS,
        ]

    def test_reopened_ca_sees_the_same_state(self, authority: CertificateAuthority):
        """
        GIVEN a CA with one revoked certificate and one CRL
        WHEN it is closed and opened again
        THEN it starts LOCKED with the same collections and counters.
        """
        _issue(authority, "Kept")
        ResultAssertions.assert_success(authority.revoke_certificate(_issue(authority, "Dropped")))
        ResultAssertions.assert_success(authority.create_crl(utc_now() + timedelta(days=1)))
        serial = authority.peek_next_serial_number()
        authority.close()

        reopened = ResultAssertions.assert_success(CertificateAuthority.open(authority.base_path))
        try:
            assert reopened.is_locked
            assert reopened == authority
            assert [p.subject for p in reopened.issued_certificates] == ["CN=Kept"]
            assert [p.subject for p in reopened.revoked_certificates] == ["CN=Dropped"]
            assert len(reopened.crls) == 1
            assert reopened.peek_next_serial_number() == serial
            assert reopened.peek_next_crl_serial_number() == 2
            ResultAssertions.assert_success(reopened.unlock(PASSPHRASE))
            assert reopened.revoked_certificates[0].load_certificate(PASSPHRASE).subject == name("Dropped")
        finally:
            reopened.close()

    def test_expired_revocations_are_left_out_of_the_crl(self, authority: CertificateAuthority):
        issued = _issue(authority)
        revoked = ResultAssertions.assert_success(authority.revoke_certificate(issued))
        revoked.set(IssuedCertificateProperties.Key.END_DATE, (utc_now() - timedelta(days=1)).isoformat())
        ResultAssertions.assert_success(authority.update_issued_certificate_properties(revoked))

        crl = ResultAssertions.assert_success(authority.create_crl(utc_now() + timedelta(days=1))).load_crl()
        assert len(crl) == 0

    def test_crl_without_next_update_defaults_to_now(self, authority: CertificateAuthority):
        before = utc_now()
        crl_properties = ResultAssertions.assert_success(authority.create_crl())
        assert crl_properties.next_expected_date >= before
        assert crl_properties.crl_serial_number == 1
        assert authority.peek_next_crl_serial_number() == 2


# ═══════════════════════════════════════════════════════════════
# 2. Lock / unlock
# ═══════════════════════════════════════════════════════════════


class TestLockState:
    def test_locked_ca_rejects_key_operations(self, locked_authority: CertificateAuthority, tmp_path: Path):
        """
        GIVEN a LOCKED CA
        WHEN any operation needing the private key is called
        THEN it fails with LOCKED_DATASTORE and nothing changes.
        """
        ca = locked_authority
        serial = ca.peek_next_serial_number()
        start, end = validity()

        for result in (
            ca.get_certificate(),
            ca.get_certificate_chain(),
            ca.get_key_pair(),
            ca.get_signature_algorithm(),
            ca.export_private_key(tmp_path / "ca.key", PASSPHRASE),
            ca.export_pkcs12(tmp_path / "ca.p12", PASSPHRASE),
            ca.create_crl(utc_now() + timedelta(days=1)),
            ca.sign_certificate_request(make_leaf_request(), start, end),
            ca.sign_and_store_certificate_request(make_leaf_request(), start, end, PASSPHRASE),
        ):
            ResultAssertions.assert_failure(result, CaError.LOCKED_DATASTORE)

        assert ca.issued_certificates == ()
        assert ca.crls == ()
        assert list((ca.base_path / X509CRL_PATH).iterdir()) == []
        assert not (tmp_path / "ca.key").exists()
        assert ca.peek_next_serial_number() == serial

    def test_unlock_and_lock_events(self, locked_authority: CertificateAuthority):
        events = _record(locked_authority)

        ResultAssertions.assert_success(locked_authority.unlock(PASSPHRASE))
        ResultAssertions.assert_success(locked_authority.unlock(PASSPHRASE))
        ResultAssertions.assert_success(locked_authority.lock())
        ResultAssertions.assert_success(locked_authority.lock())

        assert [(e.property, e.old_value, e.new_value) for e in events] == [
            (CaProperty.UNLOCKED, True, False),
            (CaProperty.UNLOCKED, False, True),
        ]

    def test_wrong_password(self, locked_authority: CertificateAuthority):
        ResultAssertions.assert_failure(locked_authority.unlock("wrong"), CaError.INVALID_PASSWORD)
        assert locked_authority.is_locked

    def test_unlocked_exports(self, authority: CertificateAuthority, tmp_path: Path):
        certificate = ResultAssertions.assert_success(authority.get_certificate())
        key = ResultAssertions.assert_success(authority.get_key_pair())

        pem = ResultAssertions.assert_success(authority.export_certificate(tmp_path / "ca.pem"))
        assert codecs.load_certificate(pem.read_bytes()) == certificate

        key_file = ResultAssertions.assert_success(
            authority.export_private_key(tmp_path / "ca.key", PASSPHRASE, EncodingType.DER, PKCS8Cipher.DES3_CBC)
        )
        assert codecs.private_keys_equal(codecs.load_private_key(key_file.read_bytes(), PASSPHRASE), key)

        bundle = ResultAssertions.assert_success(authority.export_pkcs12(tmp_path / "export.p12", "export"))
        assert IssuedCertificate.open_pkcs12(bundle, "export").certificate == certificate

        chain = ResultAssertions.assert_success(authority.export_certificate_chain(tmp_path / "ca.p7b"))
        assert IssuedCertificate.open_pkcs7(chain).certificate_chain == (certificate,)

        public = ResultAssertions.assert_success(authority.export_public_key(tmp_path / "ca.pub"))
        assert codecs.load_public_key(public.read_bytes()) == certificate.public_key()
        ResultAssertions.assert_success_value(authority.can_create_intermediate_ca(), True)


# ═══════════════════════════════════════════════════════════════
# 3. Creation and settings
# ═══════════════════════════════════════════════════════════════


class TestCreate:
    def test_layout(self, authority: CertificateAuthority):
        base = authority.base_path
        assert (base / SETTINGS_FILENAME).is_file()
        assert (base / "ca.p12").is_file()
        for element in (ISSUED_PATH, REVOKED_PATH, REQUESTS_PATH, X509CRL_PATH, TEMPLATES_PATH):
            assert (base / element).is_dir()
        assert not authority.is_locked

    def test_keystore_alias_is_description(self, authority: CertificateAuthority):
        contents = codecs.load_pkcs12((authority.base_path / "ca.p12").read_bytes(), PASSPHRASE)
        assert contents.alias == "Test CA"

    def test_refuses_existing_ca(self, authority: CertificateAuthority):
        result = CertificateAuthority.create(authority.base_path, make_ca_certificate())
        ResultAssertions.assert_failure(result, CaError.IO_FAILURE)

    @pytest.mark.parametrize("path", [None, "", "/", "/etc"])
    def test_refuses_bad_paths(self, path):
        ResultAssertions.assert_failure(CertificateAuthority.create(path, make_ca_certificate()), CaError.IO_FAILURE)

    def test_refuses_missing_directory(self, tmp_path: Path):
        result = CertificateAuthority.open(tmp_path / "absent")
        ResultAssertions.assert_failure(result, CaError.IO_FAILURE)

    def test_refuses_non_ca_certificate(self, tmp_path: Path, ca_issuer: IssuedCertificate):
        leaf = make_leaf_request("Leaf")
        start, end = validity()
        certificate = certificate_factory.sign_certificate_request(ca_issuer, leaf, start, end, lambda: 9)
        result = CertificateAuthority.create(tmp_path, IssuedCertificate((certificate,), leaf.private_key()))
        ResultAssertions.assert_failure(result, CaError.IO_FAILURE)
        assert not (tmp_path / SETTINGS_FILENAME).exists()

    def test_refuses_missing_certificate(self, tmp_path: Path):
        ResultAssertions.assert_failure(CertificateAuthority.create(tmp_path, None), CaError.IO_FAILURE)

    def test_refuses_issuer_without_password(self, tmp_path: Path):
        result = CertificateAuthority.create(tmp_path, make_ca_certificate(password=None))
        ResultAssertions.assert_failure(result, CaError.INVALID_ARGUMENT)
        assert not (tmp_path / SETTINGS_FILENAME).exists()


class TestSettings:
    def test_description_event_and_persistence(self, authority: CertificateAuthority):
        events = _record(authority)
        ResultAssertions.assert_success(authority.set_description("Renamed"))
        ResultAssertions.assert_success(authority.set_description("Renamed"))

        assert [(e.property, e.old_value, e.new_value) for e in events] == [
            (CaProperty.DESCRIPTION, "Test CA", "Renamed")
        ]
        stored = json.loads((authority.base_path / SETTINGS_FILENAME).read_text())
        assert stored["description"] == "Renamed"

    @pytest.mark.parametrize("days", [0, -5])
    def test_expiry_days_must_be_positive(self, authority: CertificateAuthority, days: int):
        events = _record(authority)
        ResultAssertions.assert_failure(authority.set_expiry_days(days), CaError.INVALID_ARGUMENT)
        assert authority.expiry_days == 365
        assert events == []

    def test_signature_algorithm_must_match_key(self, authority: CertificateAuthority):
        ResultAssertions.assert_success_value(authority.get_signature_algorithm(), SignatureAlgorithm.SHA512_WITH_ECDSA)
        ResultAssertions.assert_failure(
            authority.set_signature_algorithm(SignatureAlgorithm.SHA256_WITH_RSA), CaError.INVALID_ARGUMENT
        )
        ResultAssertions.assert_success(authority.set_signature_algorithm(SignatureAlgorithm.SHA256_WITH_ECDSA))

        issued = _issue(authority)
        certificate = issued.load_certificate(PASSPHRASE)
        assert certificate.signature_hash_algorithm.name == "sha256"

    def test_enable_log_writes_activity(self, authority: CertificateAuthority):
        ResultAssertions.assert_success(authority.set_enable_log(True))
        _issue(authority)
        ResultAssertions.assert_success(authority.set_enable_log(False))

        log_file = authority.base_path / "Log" / f"{authority.certificate_authority_id}.log"
        actions = [json.loads(line)["event"] for line in log_file.read_text().splitlines()]
        assert "sign" in actions

    def test_listener_exception_reaches_caller(self, authority: CertificateAuthority):
        """
        GIVEN a subscriber that raises
        WHEN a setting changes
        THEN the exception reaches the caller after the change was persisted.
        """

        def failing(event: PropertyChangeEvent) -> None:
            raise RuntimeError("listener failed")

        handle = authority.subscribe(failing)
        with pytest.raises(RuntimeError, match="listener failed"):
            authority.set_description("Changed")
        assert authority.description == "Changed"
        authority.unsubscribe(handle)


# ═══════════════════════════════════════════════════════════════
# 4. Serial numbers and file names
# ═══════════════════════════════════════════════════════════════


class TestSerials:
    @pytest.mark.parametrize(
        ("serial", "filename"),
        [(0x1000, "0000000000001000.p12"), (0xDEADBEEF, "00000000deadbeef.p12"), (1, "0000000000000001.p12")],
    )
    def test_generate_filename(self, authority: CertificateAuthority, serial: int, filename: str):
        assert authority.generate_filename(serial, ISSUED_PATH, ".p12") == authority.base_path / ISSUED_PATH / filename

    def test_incremental_serials_are_persisted(self, authority: CertificateAuthority):
        first = ResultAssertions.assert_success(authority.get_next_serial_number())
        second = ResultAssertions.assert_success(authority.get_next_serial_number())
        assert second == first + 1
        stored = CertificateAuthoritySettings.read(authority.base_path / SETTINGS_FILENAME)
        assert stored.serial == second + 1

    def test_timestamp_serials(self, authority: CertificateAuthority):
        ResultAssertions.assert_success(authority.set_incremental_serial(False))
        before = utc_now().timestamp() * 1000
        serial = ResultAssertions.assert_success(authority.get_next_serial_number())
        assert serial >= before
        assert ResultAssertions.assert_success(authority.get_next_serial_number()) > serial

    def test_serial_repaired_on_open(self, authority: CertificateAuthority):
        """
        GIVEN a configuration whose next serial fell behind the issued certificates
        WHEN the CA is opened
        THEN the next serial is raised past the highest issued serial.
        """
        issued = _issue(authority)
        authority.close()
        settings_path = authority.base_path / SETTINGS_FILENAME
        settings = CertificateAuthoritySettings.read(settings_path)
        settings.serial = 1
        CertificateAuthoritySettings.write(settings, settings_path)

        reopened = ResultAssertions.assert_success(CertificateAuthority.open(authority.base_path))
        try:
            assert reopened.peek_next_serial_number() == issued.serial_number + 1
        finally:
            reopened.close()

    def test_crl_serial_repaired_on_open(self, authority: CertificateAuthority):
        """
        GIVEN three CRLs on disk and a configuration whose CRL serial fell back to 1
        WHEN the CA is opened
        THEN the next CRL serial is raised past the highest stored CRL number.
        """
        for _ in range(3):
            ResultAssertions.assert_success(authority.create_crl(utc_now() + timedelta(days=1)))
        authority.close()
        settings_path = authority.base_path / SETTINGS_FILENAME
        settings = CertificateAuthoritySettings.read(settings_path)
        settings.crl_serial = 1
        CertificateAuthoritySettings.write(settings, settings_path)

        reopened = ResultAssertions.assert_success(CertificateAuthority.open(authority.base_path))
        try:
            assert reopened.peek_next_crl_serial_number() == 4
            assert CertificateAuthoritySettings.read(settings_path).crl_serial == 4
            ResultAssertions.assert_success(reopened.unlock(PASSPHRASE))
            crl = ResultAssertions.assert_success(reopened.create_crl(utc_now() + timedelta(days=1)))
            assert crl.crl_serial_number == 4
        finally:
            reopened.close()

    def test_keystore_without_password_consumes_no_serial(self, authority: CertificateAuthority):
        """
        GIVEN a request that owns its key pair
        WHEN it is signed and stored without a keystore password
        THEN the call fails with INVALID_ARGUMENT before a serial is drawn or a file is written.
        """
        serial = authority.peek_next_serial_number()
        start, end = validity()
        for password in (None, ""):
            result = authority.sign_and_store_certificate_request(make_leaf_request(), start, end, password)
            ResultAssertions.assert_failure(result, CaError.INVALID_ARGUMENT)
        assert authority.peek_next_serial_number() == serial
        assert list((authority.base_path / ISSUED_PATH).iterdir()) == []

    def test_refresh_picks_up_foreign_entries(self, authority: CertificateAuthority):
        """
        GIVEN a property file dropped into Issued/ without a serial field
        WHEN the CA is refreshed
        THEN the entry appears, an ISSUED event fires and the serial follows its file name.
        """
        events = _record(authority)
        path = authority.base_path / ISSUED_PATH / "00000000000000ff.prop"
        IssuedCertificateProperties(path, ArtifactLocator((path.parent,)), {"subject": "CN=Imported"}).store()

        ResultAssertions.assert_success(authority.refresh())
        assert [p.subject for p in authority.issued_certificates] == ["CN=Imported"]
        assert [e.property for e in events] == [CaProperty.ISSUED]
        assert authority.peek_next_serial_number() == 0x100

        ResultAssertions.assert_success(authority.refresh())
        assert len(events) == 1


# ═══════════════════════════════════════════════════════════════
# 5. Revocation arguments
# ═══════════════════════════════════════════════════════════════


class TestRevocation:
    def test_revoke_none(self, authority: CertificateAuthority):
        ResultAssertions.assert_failure(authority.revoke_certificate(None), CaError.INVALID_ARGUMENT)

    def test_revoke_twice(self, authority: CertificateAuthority):
        issued = _issue(authority)
        ResultAssertions.assert_success(authority.revoke_certificate(issued))
        ResultAssertions.assert_failure(authority.revoke_certificate(issued), CaError.INVALID_ARGUMENT)
        assert len(authority.revoked_certificates) == 1

    def test_revoke_unknown(self, authority: CertificateAuthority, tmp_path: Path):
        stranger = IssuedCertificateProperties(tmp_path / "x.prop", ArtifactLocator((tmp_path,)))
        ResultAssertions.assert_failure(authority.revoke_certificate(stranger), CaError.NOT_FOUND)

    def test_revocation_defaults(self, authority: CertificateAuthority):
        before = utc_now()
        revoked = ResultAssertions.assert_success(authority.revoke_certificate(_issue(authority)))
        assert revoked.revoke_code is RevokeReasonCode.UNSPECIFIED
        assert revoked.revoke_date >= before

    def test_failed_revoke_changes_nothing(self, authority: CertificateAuthority):
        """
        GIVEN an Issued/ entry whose property file names no certificate store
        WHEN it is revoked
        THEN the call fails with IO_FAILURE and the entry stays issued and unrevoked,
        so a second attempt fails the same way instead of "already revoked".
        """
        path = authority.base_path / ISSUED_PATH / "00000000000000ff.prop"
        IssuedCertificateProperties(
            path, ArtifactLocator((path.parent,)), {"subject": "CN=Broken", "certificateSerialNumber": "255"}
        ).store()
        ResultAssertions.assert_success(authority.refresh())
        (broken,) = authority.issued_certificates

        for _ in range(2):
            result = authority.revoke_certificate(broken, reason=RevokeReasonCode.KEY_COMPROMISE)
            ResultAssertions.assert_failure(result, CaError.IO_FAILURE)
            assert not broken.is_revoked
            assert broken.path == path
            assert authority.issued_certificates == (broken,)
            assert authority.revoked_certificates == ()
        assert "revokeDate" not in json.loads(path.read_text())

    def test_revoke_refuses_to_overwrite_revoked_files(self, authority: CertificateAuthority):
        """
        GIVEN a file of the same name already sitting in Revoked/
        WHEN the issued certificate is revoked
        THEN nothing is moved and the entry can be revoked once the clash is gone.
        """
        issued = _issue(authority)
        clash = authority.base_path / REVOKED_PATH / issued.path.name
        clash.write_text("{}")

        ResultAssertions.assert_failure(authority.revoke_certificate(issued), CaError.IO_FAILURE)
        assert not issued.is_revoked
        assert (authority.base_path / ISSUED_PATH / issued.store_filename).is_file()
        assert issued.path.parent.name == ISSUED_PATH

        clash.unlink()
        revoked = ResultAssertions.assert_success(authority.revoke_certificate(issued))
        assert revoked.path.parent.name == REVOKED_PATH

    def test_property_updates(self, authority: CertificateAuthority, tmp_path: Path):
        issued = _issue(authority)
        issued.comments = "renew next year"
        ResultAssertions.assert_success(authority.update_issued_certificate_properties(issued))
        assert json.loads(issued.path.read_text())["comments"] == "renew next year"

        stranger = IssuedCertificateProperties(tmp_path / "x.prop", ArtifactLocator((tmp_path,)))
        ResultAssertions.assert_failure(authority.update_issued_certificate_properties(stranger), CaError.NOT_FOUND)
        ResultAssertions.assert_failure(authority.update_issued_certificate_properties(None), CaError.INVALID_ARGUMENT)


# ═══════════════════════════════════════════════════════════════
# 6. Certificate signing requests
# ═══════════════════════════════════════════════════════════════


class TestSigningRequests:
    def test_add_sign_and_move(self, authority: CertificateAuthority, csr_file: Path):
        """
        GIVEN a PKCS#10 file imported into Requests/
        WHEN it is signed and moved to the issued entry
        THEN the chain is stored as PKCS#7, the CSR travels with it
         AND the request is gone from Requests/.
        """
        events = _record(authority)
        request = ResultAssertions.assert_success(authority.add_certificate_signing_request(csr_file))
        assert authority.certificate_requests == (request,)
        assert request.key_type is KeyType.EC_secp256r1
        assert request.path.parent.name == REQUESTS_PATH

        start, end = validity()
        issued = ResultAssertions.assert_success(
            authority.sign_and_store_certificate_request(request.load_request(), start, end, None)
        )
        assert issued.store_filename.endswith(".p7b")
        certificate = issued.load_certificate()
        assert certificate.public_key() == request.load_request().public_key()

        moved = ResultAssertions.assert_success(authority.move_certificate_signing_request(request, issued))
        csr_name = moved.get(IssuedCertificateProperties.Key.CSR_STORE)
        assert csr_name == Path(issued.store_filename).stem + ".csr"
        assert (authority.base_path / ISSUED_PATH / csr_name).is_file()
        assert authority.certificate_requests == ()
        assert list((authority.base_path / REQUESTS_PATH).iterdir()) == []
        assert [e.property for e in events] == [CaProperty.REQUESTS, CaProperty.ISSUED, CaProperty.REQUESTS]

        revoked = ResultAssertions.assert_success(authority.revoke_certificate(moved))
        assert (authority.base_path / REVOKED_PATH / csr_name).is_file()
        assert revoked.load_certificate() == certificate

    def test_remove(self, authority: CertificateAuthority, csr_file: Path):
        request = ResultAssertions.assert_success(authority.add_certificate_signing_request(csr_file))
        ResultAssertions.assert_success(authority.remove_certificate_signing_request(request))
        assert authority.certificate_requests == ()
        assert not request.path.exists()
        ResultAssertions.assert_failure(authority.remove_certificate_signing_request(request), CaError.NOT_FOUND)
        ResultAssertions.assert_failure(authority.remove_certificate_signing_request(None), CaError.INVALID_ARGUMENT)

    def test_same_file_imported_twice_gets_distinct_names(self, authority: CertificateAuthority, csr_file: Path):
        first = ResultAssertions.assert_success(authority.add_certificate_signing_request(csr_file))
        second = ResultAssertions.assert_success(authority.add_certificate_signing_request(csr_file))
        assert first.path != second.path
        assert len(authority.certificate_requests) == 2

    def test_malformed_csr(self, authority: CertificateAuthority, tmp_path: Path):
        garbage = tmp_path / "garbage.csr"
        garbage.write_bytes(b"not a csr")
        ResultAssertions.assert_failure(authority.add_certificate_signing_request(garbage), CaError.IO_FAILURE)
        ResultAssertions.assert_failure(authority.add_certificate_signing_request(None), CaError.INVALID_ARGUMENT)
        assert list((authority.base_path / REQUESTS_PATH).iterdir()) == []


# ═══════════════════════════════════════════════════════════════
# 7. Templates
# ═══════════════════════════════════════════════════════════════


class TestTemplates:
    def test_add_reopen_remove(self, authority: CertificateAuthority):
        template = CertificateKeyPairTemplate(subject=name("Template"), key_type=KeyType.EC_P384, description="Web")
        twin = CertificateKeyPairTemplate(
            subject=name("Twin"), key_type=KeyType.ED25519, creation_date=template.creation_date
        )
        ResultAssertions.assert_success(authority.add_template(template))
        ResultAssertions.assert_success(authority.add_template(twin))
        assert len(list((authority.base_path / TEMPLATES_PATH).iterdir())) == 2
        authority.close()

        reopened = ResultAssertions.assert_success(CertificateAuthority.open(authority.base_path))
        try:
            assert set(reopened.templates) == {template, twin}
            ResultAssertions.assert_success(reopened.remove_certificate_template(template))
            assert reopened.templates == (twin,)
            ResultAssertions.assert_failure(reopened.remove_certificate_template(template), CaError.NOT_FOUND)
            ResultAssertions.assert_failure(reopened.remove_certificate_template(None), CaError.NOT_FOUND)
        finally:
            reopened.close()

    def test_add_none(self, authority: CertificateAuthority):
        ResultAssertions.assert_failure(authority.add_template(None), CaError.INVALID_ARGUMENT)
