# -*- coding: utf-8 -*-

"""
PKIHelper - PEM streams

Reads and writes bundles of PEM encoded keys, certificates, signing requests and CRLs.
"""

import re
from pathlib import Path
from typing import Optional, Tuple, Type, Generator, Union, Iterable, TypeVar

from cryptography.hazmat.primitives import serialization

from pki_helper import PrivateKey, PublicKey, PasswordInput, check_file
from pki_helper.certs import CertSigningRequest, Cert, Crl
from pki_helper.errors import WrongObjectTypeError, MultipleObjectsError, EmptyStreamError, NotFoundError


PemSource = Union[bytes, str, Path]
PemObject = Union[PrivateKey, PublicKey, Cert, CertSigningRequest, Crl]

T = TypeVar("T")

# Mapping PEM title labels to the corresponding class
pem_label_to_class = {
    b"CERTIFICATE": Cert,
    b"X509 CRL": Crl,
    b"CERTIFICATE REQUEST": CertSigningRequest,
    b"NEW CERTIFICATE REQUEST": CertSigningRequest,
    b"PRIVATE KEY": PrivateKey,
    b"ENCRYPTED PRIVATE KEY": PrivateKey,
    b"RSA PRIVATE KEY": PrivateKey,
    b"EC PRIVATE KEY": PrivateKey,
    b"PUBLIC KEY": PublicKey,
}


# Groups: 1: label, 2: base64 data
_RE_PEM_BODY = re.compile(rb"-----BEGIN (?P<label>[A-Z0-9 ]*)-----(?P<base64>.*?)-----END (?P=label)-----",
                          re.DOTALL)


def split_pem_chain(chained_data: bytes) -> Generator[Tuple[slice, Optional[Type], bytes], None, None]:
    """
    Finds all PEM formatted elements in the bytes blob.

    Generates a sequence of tuples of:
     - the slice region
     - coresponding class which may load the bytes in the range if supported or None
     - PEM label name

    :param chained_data: Data as bytes which may contain multiple segments of PEM conform items.
    :return: Generator for tuple(slice, class name or None, PEM item label)
    """
    # "-----BEGIN " + LABEL + "-----" + DATA + "-----END " + LABEL + "-----".

    for match in _RE_PEM_BODY.finditer(chained_data):
        label = match.group("label")
        yield slice(match.start(), match.end()), pem_label_to_class.get(label), label


def _read_source(source: PemSource) -> bytes:
    if isinstance(source, bytes):
        return source

    if isinstance(source, (str, Path)):
        return check_file(source, must_exist=True, argname="source").read_bytes()

    raise TypeError("PEM source must be bytes or a str or Path of a file. Not " + repr(type(source)))


def pem_to_objects(source: PemSource, passwd: PasswordInput = None) -> list[PemObject]:
    """
    Loads every PEM element of the source.
    :raises WrongObjectTypeError: for PEM labels without a supported class
    """
    data = _read_source(source)
    result = []

    for region, cls, label in split_pem_chain(data):
        if cls is None:
            raise WrongObjectTypeError("Unsupported PEM object: " + label.decode("ascii", "replace"))

        if cls is PrivateKey:
            result.append(PrivateKey(data[region], passwd))
        else:
            result.append(cls(data[region]))

    return result


def _objects_of_type(source: PemSource, cls: Type[T], name: str, passwd: PasswordInput = None) -> list[T]:
    objs = pem_to_objects(source, passwd)
    for obj in objs:
        if type(obj) is not cls:
            raise WrongObjectTypeError(f"Expected only {name} objects but found {type(obj).__name__}.", name)
    return objs


def _single_object(source: PemSource, cls: Type[T], name: str, passwd: PasswordInput = None) -> T:
    objs = _objects_of_type(source, cls, name, passwd)
    if not objs:
        raise EmptyStreamError(f"The PEM stream does not contain a {name}.", name)
    if len(objs) > 1:
        raise MultipleObjectsError(f"The PEM stream contains {len(objs)} objects. Expected a single {name}.", name)
    return objs[0]


def pem_to_certs(source: PemSource) -> list[Cert]:
    return _objects_of_type(source, Cert, "certificate")


def pem_to_crls(source: PemSource) -> list[Crl]:
    return _objects_of_type(source, Crl, "CRL")


def pem_to_private_keys(source: PemSource, passwd: PasswordInput = None) -> list[PrivateKey]:
    return _objects_of_type(source, PrivateKey, "private key", passwd)


def pem_to_cert(source: PemSource) -> Cert:
    return _single_object(source, Cert, "certificate")


def pem_to_crl(source: PemSource) -> Crl:
    return _single_object(source, Crl, "CRL")


def pem_to_csr(source: PemSource) -> CertSigningRequest:
    return _single_object(source, CertSigningRequest, "certificate request")


def pem_to_private_key(source: PemSource, passwd: PasswordInput = None) -> PrivateKey:
    return _single_object(source, PrivateKey, "private key", passwd)


def pem_to_public_key(source: PemSource) -> PublicKey:
    return _single_object(source, PublicKey, "public key")


def obj_to_pem(obj: PemObject) -> bytes:
    if isinstance(obj, (Cert, CertSigningRequest, Crl)):
        return obj.to_bytes(serialization.Encoding.PEM)

    if isinstance(obj, PrivateKey):
        return obj.private_key_to_bytes(serialization.Encoding.PEM)

    if isinstance(obj, PublicKey):
        return obj.public_key_to_bytes(serialization.Encoding.PEM)

    raise TypeError("Cannot write object as PEM: " + repr(type(obj)))


def objs_to_pem(objs: Iterable[PemObject]) -> bytes:
    return b"".join(obj_to_pem(obj) for obj in objs)


def objs_to_pem_file(objs: Iterable[PemObject], file: Union[str, Path]):
    file = check_file(file, must_exist=False, argname="file")
    file.write_bytes(objs_to_pem(objs))


def pem_to_ca_cert(cert_source: PemSource, key_source: Union[PemSource, PrivateKey],
                   passwd: PasswordInput = None) -> Cert:
    """
    First certificate of a bundle which belongs to the private key.
    :raises EmptyStreamError: if the bundle contains no certificate
    :raises NotFoundError: if no certificate matches the key
    """
    certs = pem_to_certs(cert_source)
    if not certs:
        raise EmptyStreamError("The PEM stream does not contain a certificate.", "certificate")

    key = key_source if isinstance(key_source, PrivateKey) else pem_to_private_key(key_source, passwd)

    for cert in certs:
        if cert.same_public_key(key):
            return cert

    raise NotFoundError("No certificate in the bundle matches the private key.")
