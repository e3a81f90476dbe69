# -*- coding: utf-8 -*-

import pytest
from cryptography.hazmat.primitives import hashes, serialization

from pki_helper.certs import sign_certificate
from pki_helper.errors import ValueShapeError
from pki_helper.extensions import AuthorityKeyIdentifier, GeneralNames, SUBJECT_KEY_IDENTIFIER_OID, \
    AUTHORITY_KEY_IDENTIFIER_OID
from pki_helper.keyids import key_identifier, subject_key_identifier, authority_key_identifier, cert_key_identifier


def _sha1(data: bytes) -> bytes:
    digest = hashes.Hash(hashes.SHA1())
    digest.update(data)
    return digest.finalize()


def test_type_1_is_sha1_over_public_key_bits(subject_key):
    # For EC keys the subjectPublicKey bits are the uncompressed point
    point = subject_key.public_key.public_bytes(serialization.Encoding.X962,
                                                serialization.PublicFormat.UncompressedPoint)
    assert key_identifier(subject_key) == _sha1(point)
    assert len(key_identifier(subject_key.public_key)) == 20


def test_type_2_is_low_order_bytes(subject_key):
    full = key_identifier(subject_key)
    truncated = key_identifier(subject_key, truncate=True)

    assert len(truncated) == 8
    assert truncated == full[-8:]
    assert truncated == key_identifier(subject_key.public_key, truncate=True)


def test_key_identifier_rejects_other_types():
    with pytest.raises(TypeError):
        key_identifier(b"not a key")


def test_subject_key_identifier(subject_key):
    ski = subject_key_identifier(subject_key)
    assert ski.oid == SUBJECT_KEY_IDENTIFIER_OID
    assert not ski.critical
    assert ski.value == key_identifier(subject_key)

    assert len(subject_key_identifier(subject_key, truncate=True).value) == 8


def test_authority_key_identifier_from_key(issuer_key):
    aki = authority_key_identifier(issuer_key, critical=True)
    assert aki.oid == AUTHORITY_KEY_IDENTIFIER_OID
    assert aki.critical
    assert aki.value == AuthorityKeyIdentifier(key_identifier(issuer_key), None, None)


def test_authority_key_identifier_from_name_and_serial(issuer_name):
    aki = authority_key_identifier(issuer=issuer_name, serial_number=42)
    assert aki.value == AuthorityKeyIdentifier(None, GeneralNames(directory_name=(issuer_name,)), 42)

    with pytest.raises(ValueShapeError):
        authority_key_identifier(issuer=issuer_name)

    with pytest.raises(ValueShapeError):
        authority_key_identifier(serial_number=42)


def test_authority_key_identifier_combined(issuer_key, issuer_name):
    aki = authority_key_identifier(issuer_key, issuer="CN=Test CA: localhost", serial_number=7)
    assert aki.value.key_identifier == key_identifier(issuer_key)
    assert aki.value.issuer.directory_name == (issuer_name,)
    assert aki.value.serial_number == 7


def test_authority_key_identifier_from_certificate(issuer_key, issuer_name, not_before, not_after):
    truncated_ski = subject_key_identifier(issuer_key, truncate=True)
    with_ski = sign_certificate(issuer_name, issuer_key, 1, not_before, not_after, issuer_name, issuer_key,
                                [truncated_ski])
    without_ski = sign_certificate(issuer_name, issuer_key, 2, not_before, not_after, issuer_name, issuer_key)

    assert cert_key_identifier(with_ski) == truncated_ski.value
    assert authority_key_identifier(with_ski).value.key_identifier == truncated_ski.value
    assert authority_key_identifier(without_ski).value.key_identifier == key_identifier(issuer_key)
