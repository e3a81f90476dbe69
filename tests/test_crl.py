# -*- coding: utf-8 -*-

from datetime import timedelta

import pytest
from cryptography.x509 import ReasonFlags

from pki_helper import extensions as ext
from pki_helper.certs import Crl, RevokedCert, sign_certificate
from pki_helper.crl import CrlBuilder, new_crl, revoke, revoke_multiple, is_revoked, crl_number, find_ca_crl, \
    CRL_VALIDITY_DAYS
from pki_helper.errors import InvalidCRLSignatureError, NotFoundError, DuplicateCertException
from pki_helper.extensions import Extension, AuthorityKeyIdentifier
from pki_helper.keyids import authority_key_identifier, key_identifier
from pki_helper.names import issued_by, cn
from pki_helper.pki import create_ca_extensions


@pytest.fixture
def crl(issuer_key, issuer_name):
    return new_crl(issuer_name, issuer_key, issuer_key)


def _later(crl: Crl):
    return crl.last_update + timedelta(seconds=10)


def test_new_crl(crl, issuer_key, issuer_name):
    assert issued_by(crl, issuer_name)
    assert crl.is_signature_valid(issuer_key)
    assert crl_number(crl) == 0
    assert len(crl) == 0
    assert abs(crl.next_update - crl.last_update - timedelta(days=CRL_VALIDITY_DAYS)) <= timedelta(seconds=1)

    assert set(crl.get_extensions()) == {
        Extension(ext.AUTHORITY_KEY_IDENTIFIER_OID, False, AuthorityKeyIdentifier(key_identifier(issuer_key))),
        Extension(ext.CRL_NUMBER_OID, False, 0),
    }


def test_new_crl_pem_round_trip(crl):
    parsed = Crl(crl.to_bytes())
    assert parsed == crl
    assert issued_by(parsed, "CN=Test CA: localhost")


def test_new_crl_with_truncated_authority_key_identifier(issuer_key, issuer_name):
    truncated = authority_key_identifier(issuer_key, truncate=True)
    crl = new_crl(issuer_name, issuer_key, issuer_key, extensions=[truncated])

    assert len(crl.extension_value(ext.AUTHORITY_KEY_IDENTIFIER_OID).key_identifier) == 8

    updated = revoke(crl, issuer_key, issuer_key, 5, now=_later(crl))
    assert updated.get_extension(ext.AUTHORITY_KEY_IDENTIFIER_OID) == crl.get_extension(ext.AUTHORITY_KEY_IDENTIFIER_OID)


def test_new_crl_with_delta_indicator(issuer_key, issuer_name):
    crl = new_crl(issuer_name, issuer_key, issuer_key, crl_number=1, extensions=[ext.delta_crl_indicator(0)])
    assert crl_number(crl) == 1
    assert crl.extension_value(ext.DELTA_CRL_INDICATOR_OID) == 0


def test_revoke(crl, issuer_key, issuer_name, subject_key, not_before, not_after):
    cert = sign_certificate(issuer_name, issuer_key, 1234, not_before, not_after, cn("foo"), subject_key)
    assert not is_revoked(crl, cert)

    updated = revoke(crl, issuer_key, issuer_key, cert.serial_number, now=_later(crl))

    assert is_revoked(updated, cert)
    assert is_revoked(updated, 1234)
    assert not is_revoked(crl, cert)
    assert crl_number(updated) == 1
    assert updated.last_update > crl.last_update
    assert updated.next_update > crl.next_update
    assert updated.next_update - updated.last_update == crl.next_update - crl.last_update
    assert updated.issuer == crl.issuer
    assert updated.get_extension(ext.AUTHORITY_KEY_IDENTIFIER_OID) == crl.get_extension(ext.AUTHORITY_KEY_IDENTIFIER_OID)
    assert updated.is_signature_valid(issuer_key)
    assert updated.get_revoked_certificate_by_certificate(cert).revocation_date == updated.last_update


def test_revoke_multiple(crl, issuer_key):
    updated = revoke_multiple(crl, issuer_key, issuer_key, [10, 11, 12], now=_later(crl))

    assert crl_number(updated) == 1
    assert updated.revoked_serial_numbers == {10, 11, 12}

    again = revoke_multiple(updated, issuer_key, issuer_key, [12, 13, 13], now=_later(updated))
    assert crl_number(again) == 2
    assert len(again) == 4
    assert again.revoked_serial_numbers == {10, 11, 12, 13}

    # Earlier revocations keep their date
    assert again.get_revoked_certificate_by_serial_number(10).revocation_date == updated.last_update


def test_revoke_rejects_foreign_crl(crl, key_factory):
    other = key_factory()
    with pytest.raises(InvalidCRLSignatureError):
        revoke(crl, other, other, 1)


def test_revoke_bad_serial(crl, issuer_key):
    with pytest.raises(ValueError):
        revoke(crl, issuer_key, issuer_key, -1)

    with pytest.raises(TypeError):
        revoke(crl, issuer_key, issuer_key, "1")


def test_crl_number_missing(issuer_key, issuer_name):
    crl = CrlBuilder(issuer_key).build_crl(issuer_name)
    assert crl.crl_number is None

    with pytest.raises(NotFoundError):
        crl_number(crl)

    with pytest.raises(NotFoundError):
        revoke(crl, issuer_key, issuer_key, 1)


def test_crl_builder(issuer_key, issuer_name):
    builder = CrlBuilder(issuer_key)
    builder.add_revocation(RevokedCert(1, 0, ReasonFlags.key_compromise))
    builder.add_revocation(RevokedCert(2))

    with pytest.raises(DuplicateCertException):
        builder.add_revocation(RevokedCert(1))

    assert 1 in builder
    assert 3 not in builder

    crl = builder.build_crl(issuer_name, last_update=0, next_update=1)
    assert len(crl) == 2
    assert crl.get_revoked_certificate_by_serial_number(1).crl_reason is ReasonFlags.key_compromise
    assert crl.get_revoked_certificate_by_serial_number(2).crl_reason is None
    assert crl.is_valid_by_date

    with pytest.raises(ValueError):
        builder.build_crl(issuer_name, last_update=0, next_update=-1)


def test_crl_file(tmp_path, crl):
    crl.to_file(tmp_path / "ca.crl.pem")
    assert Crl(tmp_path / "ca.crl.pem") == crl


def test_find_ca_crl(crl, issuer_key, issuer_name, key_factory, not_before, not_after):
    leaf_name = cn("Intermediate CA (master-ca)")
    leaf_key = key_factory()
    leaf_cert = sign_certificate(issuer_name, issuer_key, 42, not_before, not_after, leaf_name, leaf_key,
                                 create_ca_extensions(issuer_key, leaf_key))
    leaf_crl = new_crl(leaf_name, leaf_key, leaf_key)

    assert find_ca_crl([leaf_crl, crl], leaf_cert) == leaf_crl
    assert find_ca_crl([crl, leaf_crl], leaf_cert) == leaf_crl

    with pytest.raises(NotFoundError):
        find_ca_crl([], leaf_cert)

    # Same name but another key
    foreign_crl = new_crl(leaf_name, issuer_key, issuer_key)
    with pytest.raises(NotFoundError):
        find_ca_crl([foreign_crl], leaf_cert)


def test_revoke_into_large_crl(crl, issuer_key):
    big = revoke_multiple(crl, issuer_key, issuer_key, range(1, 5001), now=_later(crl))
    updated = revoke(big, issuer_key, issuer_key, 5001, now=_later(big))

    assert len(updated) == 5001
    assert crl_number(updated) == 2
    assert is_revoked(updated, 5001)
    assert is_revoked(updated, 1)


def test_crl_builder_clear(issuer_key):
    builder = CrlBuilder(issuer_key)
    builder.add_revocation(RevokedCert(7))
    builder.clear()

    assert 7 not in builder
    builder.add_revocation(RevokedCert(7))
    assert len(builder) == 1
