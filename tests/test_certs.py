# -*- coding: utf-8 -*-

from datetime import datetime, timedelta

import pytest
from cryptography.hazmat.primitives import serialization

from pki_helper import PrivateKey, Ed25519Crypto
from pki_helper import extensions as ext
from pki_helper.certs import Cert, CertSigningRequest, CertBuilder, sign_certificate, generate_certificate_request, \
    verify_signature, fingerprint, convert_timeinfo
from pki_helper.crl import CrlBuilder
from pki_helper.errors import SigningError, NotFoundError
from pki_helper.extensions import Extension, RawExtension, BasicConstraints, AuthorityKeyIdentifier, GeneralNames
from pki_helper.keyids import authority_key_identifier, subject_key_identifier, key_identifier
from pki_helper.names import cn, has_subject, issued_by
from pki_helper.pki import create_ca_extensions


def test_sign_certificate(issuer_key, subject_key, issuer_name, subject_name, not_before, not_after):
    cert = sign_certificate(issuer_name, issuer_key, 42, not_before, not_after, subject_name, subject_key)

    assert cert.serial_number == 42
    assert cert.subject == subject_name
    assert cert.issuer == issuer_name
    assert has_subject(cert, "CN=foo.example.org")
    assert issued_by(cert, issuer_name.to_name())
    assert not issued_by(cert, "not a name")
    assert cert.same_public_key(subject_key)
    assert cert.not_valid_after == not_after.replace(microsecond=0)
    assert cert.is_valid_by_date
    assert cert.get_extensions() == []


def test_signed_objects_are_read_only(issuer_key, subject_key, issuer_name, subject_name, not_before, not_after):
    cert = sign_certificate(issuer_name, issuer_key, 1, not_before, not_after, subject_name, subject_key)
    csr = generate_certificate_request(subject_key, subject_name)
    crl = CrlBuilder(issuer_key).build_crl(issuer_name)

    for obj in (cert, csr, crl):
        assert obj.extensions == ()
        with pytest.raises(ValueError):
            obj.add_extension(ext.basic_constraints_for_ca())


def test_certificate_pem_round_trip(issuer_key, subject_key, issuer_name, subject_name, not_before, not_after):
    cert = sign_certificate(issuer_name, issuer_key, 1, not_before, not_after, subject_name, subject_key)
    parsed = Cert(cert.to_bytes())

    assert parsed == cert
    assert hash(parsed) == hash(cert)
    assert Cert(cert.to_bytes(serialization.Encoding.DER)) == cert
    assert has_subject(parsed, subject_name)


def test_certificate_file(tmp_path, issuer_key, issuer_name, not_before, not_after):
    cert = sign_certificate(issuer_name, issuer_key, 1, not_before, not_after, issuer_name, issuer_key)
    cert.to_file(tmp_path / "ca.crt")
    assert Cert(tmp_path / "ca.crt") == cert


def test_invalid_dates(issuer_key, subject_key, issuer_name, subject_name, not_before):
    with pytest.raises(ValueError):
        sign_certificate(issuer_name, issuer_key, 1, not_before, not_before, subject_name, subject_key)

    with pytest.raises(ValueError):
        sign_certificate(issuer_name, issuer_key, 1, not_before, not_before - timedelta(days=1),
                         subject_name, subject_key)

    with pytest.raises(ValueError):
        sign_certificate(issuer_name, issuer_key, 1, datetime(2020, 1, 1), 10, subject_name, subject_key)


def test_serial_numbers(issuer_key, subject_key, issuer_name, subject_name, not_before, not_after):
    with pytest.raises(ValueError):
        sign_certificate(issuer_name, issuer_key, -1, not_before, not_after, subject_name, subject_key)

    with pytest.raises(TypeError):
        sign_certificate(issuer_name, issuer_key, "1", not_before, not_after, subject_name, subject_key)

    # Refused by the backend
    with pytest.raises(SigningError) as exc_info:
        sign_certificate(issuer_name, issuer_key, 0, not_before, not_after, subject_name, subject_key)
    assert exc_info.value.subject == subject_name
    assert isinstance(exc_info.value.__cause__, ValueError)


def test_ed25519_issuer(subject_key, issuer_name, subject_name, not_before, not_after):
    issuer = PrivateKey(Ed25519Crypto)
    cert = sign_certificate(issuer_name, issuer, 5, not_before, not_after, subject_name, subject_key)
    assert cert.cert.signature_hash_algorithm is None


def test_sign_with_extensions(issuer_key, subject_key, issuer_name, subject_name, not_before, not_after):
    exts = [
        ext.basic_constraints_for_non_ca(),
        ext.key_usage({"digital_signature", "key_encipherment"}),
        ext.ext_key_usages([ext.SERVER_AUTH_OID]),
        ext.subject_alt_names({"dns_name": ["foo.example.org", "bar.example.org"], "ip": ["192.0.2.1"]}),
        ext.netscape_comment("Internal certificate"),
        ext.node_uid("ED803750-E3C7-44F5-BB08-41A04433FE2E"),
        subject_key_identifier(subject_key),
        authority_key_identifier(issuer_key),
    ]
    cert = sign_certificate(issuer_name, issuer_key, 1, not_before, not_after, subject_name, subject_key, exts)

    assert set(cert.get_extensions()) == set(exts)
    assert cert.extension_value(ext.KEY_USAGE_OID) == frozenset({"digital_signature", "key_encipherment"})
    assert cert.extension_value(ext.NODE_UID_OID) == "ED803750-E3C7-44F5-BB08-41A04433FE2E"
    assert cert.subject_dns_alt_names == ("foo.example.org", "bar.example.org")
    assert cert.subject_ip_alt_names == ("192.0.2.1",)

    with pytest.raises(NotFoundError):
        cert.extension_value(ext.DELTA_CRL_INDICATOR_OID)
    assert cert.get_extension(ext.DELTA_CRL_INDICATOR_OID) is None


def test_duplicate_extensions(issuer_key, subject_key, issuer_name, subject_name, not_before, not_after):
    with pytest.raises(ValueError):
        sign_certificate(issuer_name, issuer_key, 1, not_before, not_after, subject_name, subject_key,
                         [ext.crl_number(1), ext.crl_number(2)])


def test_unknown_extension_survives(issuer_key, subject_key, issuer_name, subject_name, not_before, not_after):
    raw = RawExtension("1.3.6.1.4.1.99999.1", False, b"\x0c\x05hello")
    cert = sign_certificate(issuer_name, issuer_key, 1, not_before, not_after, subject_name, subject_key, [raw])

    assert cert.get_extensions() == [raw]
    assert cert.extension_value("1.3.6.1.4.1.99999.1") == b"\x0c\x05hello"


def test_binary_vendor_extension(issuer_key, subject_key, issuer_name, subject_name, not_before, not_after):
    raw = RawExtension(ext.NODE_PRIVATE_EXT_ARC + ".99", False, b"\x04\x02\xff\xfe")
    cert = sign_certificate(issuer_name, issuer_key, 1, not_before, not_after, subject_name, subject_key,
                            [ext.basic_constraints_for_ca(), raw])

    assert cert.get_extensions() == [ext.basic_constraints_for_ca(), raw]
    assert cert.extension_value(ext.BASIC_CONSTRAINTS_OID) == BasicConstraints(True, None)
    assert Cert(cert.to_bytes()).extension_value(raw.oid) == b"\x04\x02\xff\xfe"


def test_authority_key_identifier_with_issuer_and_serial(issuer_key, subject_key, issuer_name, subject_name,
                                                         not_before, not_after):
    aki = authority_key_identifier(issuer=issuer_name, serial_number=42, critical=True)
    cert = sign_certificate(issuer_name, issuer_key, 42, not_before, not_after, subject_name, subject_key, [aki])

    assert cert.get_extensions() == [
        Extension(ext.AUTHORITY_KEY_IDENTIFIER_OID, True,
                  AuthorityKeyIdentifier(None, GeneralNames(directory_name=(issuer_name,)), 42))
    ]


def test_ca_extensions(issuer_key, subject_key, issuer_name, subject_name, not_before, not_after):
    cert = sign_certificate(issuer_name, issuer_key, 1, not_before, not_after, subject_name, subject_key,
                            create_ca_extensions(issuer_key, subject_key, path_len=2))

    assert cert.get_extension(ext.BASIC_CONSTRAINTS_OID).critical
    assert cert.extension_value(ext.BASIC_CONSTRAINTS_OID) == BasicConstraints(True, 2)
    assert cert.extension_value(ext.KEY_USAGE_OID) == frozenset({"key_cert_sign", "crl_sign"})
    assert cert.extension_value(ext.AUTHORITY_KEY_IDENTIFIER_OID) == \
        AuthorityKeyIdentifier(key_identifier(issuer_key), None, None)

    by_name = sign_certificate(issuer_name, issuer_key, 1, not_before, not_after, subject_name, subject_key,
                               create_ca_extensions(issuer_name, 1, subject_key))
    assert by_name.extension_value(ext.AUTHORITY_KEY_IDENTIFIER_OID) == \
        AuthorityKeyIdentifier(None, GeneralNames(directory_name=(issuer_name,)), 1)


def test_intermediate_with_type_2_subject_key_identifier(issuer_key, subject_key, issuer_name, subject_name,
                                                         not_before, not_after, key_factory):
    int_exts = ext.swap_extension(create_ca_extensions(issuer_key, subject_key),
                                  subject_key_identifier(subject_key, truncate=True))
    int_ca = sign_certificate(issuer_name, issuer_key, 2, not_before, not_after, subject_name, subject_key, int_exts)

    leaf = sign_certificate(subject_name, subject_key, 3, not_before, not_after, cn("bar"), key_factory(),
                            [authority_key_identifier(int_ca)])

    int_ca_subject_id = int_ca.extension_value(ext.SUBJECT_KEY_IDENTIFIER_OID)
    assert len(int_ca_subject_id) == 8
    assert leaf.extension_value(ext.AUTHORITY_KEY_IDENTIFIER_OID).key_identifier == int_ca_subject_id


def test_cert_builder_preset_extensions(issuer_key, subject_key, issuer_name, subject_name):
    builder = CertBuilder(issuer_key, extensions=[ext.basic_constraints_for_non_ca()])

    with pytest.raises(ValueError):
        builder.add_extension(ext.basic_constraints_for_ca())

    cert = builder.create_cert(issuer_name, (subject_name, subject_key), serial_number=10,
                               individual_extensions=[subject_key_identifier(subject_key)])

    assert cert.extension_value(ext.BASIC_CONSTRAINTS_OID) == BasicConstraints(False, None)
    assert cert.extension_value(ext.SUBJECT_KEY_IDENTIFIER_OID) == key_identifier(subject_key)
    assert cert.not_valid_before < cert.not_valid_after


def test_certificate_request(subject_key, subject_name):
    exts = [ext.subject_dns_alt_names(["foo.example.org"]), ext.node_instance_id("i-42")]
    csr = generate_certificate_request(subject_key, subject_name, exts)

    assert isinstance(csr, CertSigningRequest)
    assert verify_signature(csr)
    assert has_subject(csr, subject_name)
    assert csr.same_public_key(subject_key)
    assert csr.subject_dns_alt_names == ("foo.example.org",)
    assert csr.extension_value(ext.NODE_INSTANCE_ID_OID) == "i-42"
    assert CertSigningRequest(csr.to_bytes()) == csr


def test_tampered_certificate_request(rsa_key, subject_name):
    csr = generate_certificate_request(rsa_key, subject_name)
    der = bytearray(csr.to_bytes(serialization.Encoding.DER))
    der[-1] ^= 0xFF

    tampered = CertSigningRequest(bytes(der))
    assert not verify_signature(tampered)


def test_fingerprint(issuer_key, issuer_name, not_before, not_after):
    cert = sign_certificate(issuer_name, issuer_key, 1, not_before, not_after, issuer_name, issuer_key)

    assert len(fingerprint(cert)) == 64
    assert len(fingerprint(cert, "SHA-1")) == 40
    assert fingerprint(cert) == fingerprint(Cert(cert.to_bytes()))

    with pytest.raises(ValueError):
        fingerprint(cert, "MD5")


def test_convert_timeinfo():
    assert convert_timeinfo(None) is None
    assert convert_timeinfo(0).tzinfo is not None

    with pytest.raises(ValueError):
        convert_timeinfo(datetime(2020, 1, 1))

    with pytest.raises(ValueError):
        convert_timeinfo("tomorrow")
