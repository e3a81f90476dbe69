# -*- coding: utf-8 -*-

"""
PKIHelper - Key identifiers

Type 1 identifiers are the SHA-1 digest over the subjectPublicKey bits (20 bytes).
Type 2 identifiers are the low-order 8 bytes of the type 1 digest.
"""

from typing import Union, Optional

from pki_helper import PublicKey, PublicKeysSupported, PublicKeysSupportedTypes
from pki_helper.certs import Cert
from pki_helper.extensions import Extension, AuthorityKeyIdentifier, GeneralNames, encode, \
    SUBJECT_KEY_IDENTIFIER_OID, AUTHORITY_KEY_IDENTIFIER_OID
from pki_helper.names import AnyName, as_name


TYPE_1_LENGTH = 20
TYPE_2_LENGTH = 8

AnyPublicKey = Union[PublicKey, PublicKeysSupportedTypes]


def _as_public_key(public_key: AnyPublicKey) -> PublicKey:
    if isinstance(public_key, PublicKey):
        return public_key
    if isinstance(public_key, PublicKeysSupported):
        return PublicKey(public_key)
    raise TypeError("Expected a PublicKey or a cryptography public key. Got: " + repr(type(public_key)))


def key_identifier(public_key: AnyPublicKey, truncate: bool = False) -> bytes:
    digest = _as_public_key(public_key).public_key_digest
    if truncate:
        return digest[-TYPE_2_LENGTH:]
    return digest


def subject_key_identifier(public_key: AnyPublicKey, critical: bool = False, truncate: bool = False) -> Extension:
    return encode(SUBJECT_KEY_IDENTIFIER_OID, key_identifier(public_key, truncate), critical)


def cert_key_identifier(cert: Cert) -> bytes:
    """The certificate's own SubjectKeyIdentifier or the type 1 identifier of its key"""
    ext = cert.get_extension(SUBJECT_KEY_IDENTIFIER_OID)
    if ext is not None:
        return ext.value.digest
    return key_identifier(cert)


def authority_key_identifier(source: Union[Cert, AnyPublicKey, None] = None, *,
                             issuer: Optional[AnyName] = None,
                             serial_number: Optional[int] = None,
                             critical: bool = False,
                             truncate: bool = False) -> Extension:
    """
    Builds an AuthorityKeyIdentifier.
    :param source: The issuer's certificate or public key. A certificate contributes its own SubjectKeyIdentifier
        if it has one. Without a source only issuer and serial_number are set.
    :param issuer: Issuer name of the issuing certificate. Requires serial_number.
    :param serial_number: Serial number of the issuing certificate. Requires issuer.
    :param truncate: Use a type 2 identifier when it has to be derived from a public key.
    """
    key_id = None
    if isinstance(source, Cert):
        if truncate:
            key_id = key_identifier(source, truncate=True)
        else:
            key_id = cert_key_identifier(source)
    elif source is not None:
        key_id = key_identifier(source, truncate)

    issuer_names = None
    if issuer is not None:
        issuer_names = GeneralNames(directory_name=(as_name(issuer),))

    return encode(AUTHORITY_KEY_IDENTIFIER_OID,
                  AuthorityKeyIdentifier(key_id, issuer_names, serial_number),
                  critical)
