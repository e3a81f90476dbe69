# -*- coding: utf-8 -*-

"""
PKIHelper - Certificate/x.509 related stuff
"""

from typing import Union, Optional, Iterable, Tuple
from pathlib import Path
from contextlib import suppress
from datetime import datetime, timedelta, timezone
from logging import getLogger

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization, hashes

from cryptography.x509 import CertificateBuilder, random_serial_number, Certificate, load_pem_x509_certificate, \
    CertificateSigningRequest, load_pem_x509_csr, Version, ObjectIdentifier, CertificateSigningRequestBuilder, \
    CertificateRevocationList, load_pem_x509_crl, RevokedCertificate, load_der_x509_crl, load_der_x509_csr, \
    load_der_x509_certificate, SubjectAlternativeName, DNSName, IPAddress

from cryptography.x509.extensions import Extension as x509Extension, CRLReason, ReasonFlags

from pki_helper import check_file, PublicKey, PrivateKey, PasswordInput, CryptoDefinition, \
    PrivateKeysSupportedTypes, PublicKeysSupported, PublicKeysSupportedTypes
from pki_helper.errors import SigningError
from pki_helper.extensions import AnyExtension, to_x509_extension, normalize_extensions, decode, check_unique_oids, \
    CRL_NUMBER_OID
from pki_helper.names import DistinguishedName, AnyName, as_name


logger = getLogger(__name__)

_DAY = timedelta(days=1)
_EARLIEST_UTC_TIME = datetime(1950, 1, 1, tzinfo=timezone.utc)

ExtensionInput = Union[AnyExtension, x509Extension]


class _Random:
    pass


RANDOM = _Random()


def convert_timeinfo(d: Union[datetime, int, None]) -> Optional[datetime]:
    """
    Translates an int as offset in days from now or a timezone aware datetime into a UTC datetime.
    """
    if d is None:
        return None
    if isinstance(d, bool):
        raise ValueError("Unsupported type of d: " + repr(d))
    if isinstance(d, int):
        data = datetime.now(timezone.utc) + (_DAY * d)
    elif isinstance(d, datetime):
        if d.tzinfo is None:
            raise ValueError("datetime object must be timezone aware.")
        data = d
    else:
        raise ValueError("Unsupported type of d: " + repr(d))

    # Convert to UTC
    data = data.astimezone(timezone.utc)

    if data < _EARLIEST_UTC_TIME:
        raise ValueError("Date is below earliest allowed date (01.01.1950): " + str(data))

    return data


def _oid(oid: Union[str, ObjectIdentifier]) -> ObjectIdentifier:
    if isinstance(oid, ObjectIdentifier):
        return oid
    if isinstance(oid, str):
        return ObjectIdentifier(oid)
    raise TypeError("Unsupported argument: %r" % oid)


class ExtensionsBase:
    def __init__(self, frozen_extensions: Optional[Iterable[x509Extension]] = None):
        """Signed objects pass their extensions and stay read only. Builders pass nothing."""
        self._extensions: Union[list[x509Extension], tuple[x509Extension, ...]] = \
            [] if frozen_extensions is None else tuple(frozen_extensions)

    def add_extension(self, extension: ExtensionInput):
        if isinstance(self._extensions, tuple):
            raise ValueError("Extensions of this object are read only.")

        ext = to_x509_extension(extension)

        if self.get_extension(ext.oid) is not None:
            raise ValueError("This extension has already been set.")

        self._extensions.append(ext)

    def get_extension(self, oid: Union[str, ObjectIdentifier]) -> Optional[x509Extension]:
        oid = _oid(oid)
        for e in self._extensions:
            if e.oid == oid:
                return e

        return None

    def get_extensions(self) -> list[AnyExtension]:
        """All extensions decoded into registry values. Unknown ones stay raw."""
        return normalize_extensions(self._extensions)

    def extension_value(self, oid: Union[str, ObjectIdentifier]):
        """
        Decoded value of a single extension.
        :raises NotFoundError: if the extension is absent
        """
        return decode(self._extensions, oid)

    @property
    def extensions(self) -> tuple[x509Extension, ...]:
        return tuple(self._extensions)


def _alt_names(obj: ExtensionsBase) -> Optional[SubjectAlternativeName]:
    ext = obj.get_extension(SubjectAlternativeName.oid)
    if ext is None:
        return None
    return ext.value


class _AltNamesMixin(ExtensionsBase):
    @property
    def subject_dns_alt_names(self) -> Tuple[str, ...]:
        san = _alt_names(self)
        if san is None:
            return ()
        return tuple(san.get_values_for_type(DNSName))

    @property
    def subject_ip_alt_names(self) -> Tuple[str, ...]:
        san = _alt_names(self)
        if san is None:
            return ()
        return tuple(str(ip) for ip in san.get_values_for_type(IPAddress))


class Cert(PublicKey, _AltNamesMixin):
    """
    A certificate based on a PublicKey and some X.509 extensions.
    """
    def __init__(self, cert: Union[str, Path, bytes, Certificate]):
        if isinstance(cert, bytes):
            # Read cert from bytes
            self._cert = _load_x509_certificate(cert)
            self._source = "certificate bytes"

        elif isinstance(cert, Certificate):
            # It's a certificate already
            self._cert = cert
            self._source = "cryptography certificate"

        elif isinstance(cert, (str, Path)):
            # Read cert from bytes of file
            cert = check_file(cert, must_exist=True, argname="cert")
            self._cert = _load_x509_certificate(cert.read_bytes())
            self._source = f"certificate file: {cert}"

        else:
            raise TypeError("Unsupported format for certificate given: " + str(type(cert)))

        pkey = self._cert.public_key()
        if not isinstance(pkey, PublicKeysSupported):
            raise TypeError("The crypto type used in this certificate is not supported.")

        PublicKey.__init__(self, pkey)

        hash_algo = self._cert.signature_hash_algorithm
        if hash_algo is not None:
            self._crypto_config.use_signature_hash(hash_algo)

        ExtensionsBase.__init__(self, self._cert.extensions)

        self._issuer = DistinguishedName.from_name(self._cert.issuer)
        self._subject = DistinguishedName.from_name(self._cert.subject)

    @property
    def cert(self) -> Certificate:
        return self._cert

    @property
    def serial_number(self) -> int:
        return self._cert.serial_number

    @property
    def not_valid_before(self) -> datetime:
        return self._cert.not_valid_before_utc

    @property
    def not_valid_after(self) -> datetime:
        return self._cert.not_valid_after_utc

    @property
    def issuer(self) -> DistinguishedName:
        return self._issuer

    @property
    def subject(self) -> DistinguishedName:
        return self._subject

    @property
    def version(self) -> Version:
        return self._cert.version

    @property
    def signature(self) -> bytes:
        return self._cert.signature

    @property
    def is_valid_by_date(self) -> bool:
        return self._cert.not_valid_before_utc < datetime.now(timezone.utc) < self._cert.not_valid_after_utc

    def to_bytes(self, encoding=serialization.Encoding.PEM) -> bytes:
        return self._cert.public_bytes(encoding=encoding)

    def to_file(self, file: Union[str, Path], encoding=serialization.Encoding.PEM):
        file = check_file(file, must_exist=False, argname="file")
        file.write_bytes(self.to_bytes(encoding=encoding))

    def __eq__(self, other):
        if not isinstance(other, Cert):
            return NotImplemented
        return self._cert == other._cert

    def __hash__(self):
        return hash(self.to_bytes(serialization.Encoding.DER))

    def __repr__(self):
        return f"<{self.__class__.__name__}({self._crypto_config!r}) sn='{self._cert.serial_number}' " \
               f"issuer='{self._issuer!s}', " \
               f"subject='{self._subject!s}', " \
               f"not_valid_before='{self._cert.not_valid_before_utc}', " \
               f"not_valid_after='{self._cert.not_valid_after_utc}' " \
               f"{self.public_key_digest.hex(':')}>"


class CertSigningRequest(PublicKey, _AltNamesMixin):
    def __init__(self, csr: Union[str, Path, bytes, CertificateSigningRequest]):
        if isinstance(csr, CertificateSigningRequest):
            self._csr = csr
            self._source = "cryptography signing request"

        elif isinstance(csr, bytes):
            self._csr = _load_x509_csr(csr)
            self._source = "signing request bytes"

        elif isinstance(csr, (str, Path)):
            csr = check_file(csr, must_exist=True, argname="csr")
            self._csr = _load_x509_csr(csr.read_bytes())
            self._source = f"signing request file: {csr}"

        else:
            raise TypeError("Unsupported type for csr given: " + str(type(csr)))

        pkey = self._csr.public_key()
        if not isinstance(pkey, PublicKeysSupported):
            raise TypeError("The crypto type used in this CSR is not supported.")

        PublicKey.__init__(self, pkey)

        hash_algo = self._csr.signature_hash_algorithm
        if hash_algo is not None:
            self._crypto_config.use_signature_hash(hash_algo)

        ExtensionsBase.__init__(self, self._csr.extensions)

        self._subject = DistinguishedName.from_name(self._csr.subject)

    @property
    def csr(self) -> CertificateSigningRequest:
        return self._csr

    @property
    def subject(self) -> DistinguishedName:
        return self._subject

    @property
    def signature(self) -> bytes:
        return self._csr.signature

    def signature_valid(self) -> bool:
        return self._csr.is_signature_valid

    def to_bytes(self, encoding=serialization.Encoding.PEM) -> bytes:
        return self._csr.public_bytes(encoding=encoding)

    def to_file(self, file: Union[str, Path], encoding=serialization.Encoding.PEM):
        file = check_file(file, must_exist=False, argname="file")
        file.write_bytes(self.to_bytes(encoding=encoding))

    def __eq__(self, other):
        if not isinstance(other, CertSigningRequest):
            return NotImplemented
        return self._csr == other._csr

    def __hash__(self):
        return hash(self.to_bytes(serialization.Encoding.DER))

    def __repr__(self):
        return f"<{self.__class__.__name__}({self._crypto_config!r}) subject='{self._subject!s}'>"


def _merge_extensions(preset: Iterable[x509Extension], individual: Optional[Iterable[ExtensionInput]]) \
        -> list[x509Extension]:
    exts_merged = list(preset)
    if individual is not None:
        exts_merged.extend(to_x509_extension(e) for e in individual)

    check_unique_oids(exts_merged)
    return exts_merged


def _check_serial_number(serial_number: Union[int, _Random]) -> int:
    if serial_number is RANDOM:
        return random_serial_number()

    if isinstance(serial_number, bool) or not isinstance(serial_number, int):
        raise TypeError("serial_number must be RANDOM (default) or an integer.")

    if serial_number < 0:
        raise ValueError("serial_number must not be negative.")

    return serial_number


class CertBuilder(PrivateKey, ExtensionsBase):
    """
    Signs certificates with its private key.
    Extensions added to the builder are set on every certificate it creates.
    """
    def __init__(self,
                 privkey: Union[str, Path, bytes, PrivateKeysSupportedTypes, PrivateKey, CryptoDefinition],
                 passwd: PasswordInput = None,
                 extensions: Iterable[ExtensionInput] = ()):
        PrivateKey.__init__(self, privkey=privkey, passwd=passwd)
        ExtensionsBase.__init__(self)

        for ext in extensions:
            self.add_extension(ext)

    def create_cert(self,
                    issuer: AnyName,
                    cert_or_csr_or_subject_pubkey: Union[Cert, CertSigningRequest, tuple[AnyName, PublicKey]],
                    serial_number: Union[int, _Random] = RANDOM,
                    not_valid_before: Union[datetime, int] = -1,
                    not_valid_after: Union[datetime, int] = 365,
                    individual_extensions: Optional[Iterable[ExtensionInput]] = None
                    ) -> Cert:

        if isinstance(cert_or_csr_or_subject_pubkey, (Cert, CertSigningRequest)):
            subject_name = cert_or_csr_or_subject_pubkey.subject
            subject_pubkey = cert_or_csr_or_subject_pubkey.public_key

        elif isinstance(cert_or_csr_or_subject_pubkey, tuple) \
                and len(cert_or_csr_or_subject_pubkey) == 2 \
                and isinstance(cert_or_csr_or_subject_pubkey[1], PublicKey):
            subject_name = as_name(cert_or_csr_or_subject_pubkey[0])
            subject_pubkey = cert_or_csr_or_subject_pubkey[1].public_key

        else:
            raise TypeError("cert_or_csr_or_subject_pubkey must be: Cert or CertSigningRequest or "
                            "tuple[DistinguishedName, PublicKey]")

        issuer_name = as_name(issuer)
        exts_merged = _merge_extensions(self._extensions, individual_extensions)
        sn = _check_serial_number(serial_number)

        # Valid date bounds
        _not_valid_before = convert_timeinfo(not_valid_before)
        _not_valid_after = convert_timeinfo(not_valid_after)

        if _not_valid_before is None or _not_valid_after is None:
            raise ValueError("not_valid_before and not_valid_after are required.")

        if _not_valid_before >= _not_valid_after:
            raise ValueError("not_valid_before must be lower than not_valid_after.")

        try:
            # The setters let the backend check serial number and dates
            builder = CertificateBuilder() \
                .issuer_name(issuer_name.to_name()) \
                .subject_name(subject_name.to_name()) \
                .public_key(subject_pubkey) \
                .serial_number(sn) \
                .not_valid_before(_not_valid_before) \
                .not_valid_after(_not_valid_after)

            for ext in exts_merged:
                builder = builder.add_extension(ext.value, ext.critical)

            cert = builder.sign(private_key=self.private_key, algorithm=self.signature_hash)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise SigningError(f"Could not sign certificate for '{subject_name}': {e}", subject_name) from e

        logger.debug("Signed certificate sn=%d subject='%s' issuer='%s'", sn, subject_name, issuer_name)
        return Cert(cert)


class CsrBuilder(PrivateKey, ExtensionsBase):
    def __init__(self,
                 privkey: Union[str, Path, bytes, PrivateKeysSupportedTypes, PrivateKey, CryptoDefinition],
                 passwd: PasswordInput = None,
                 extensions: Iterable[ExtensionInput] = ()):
        PrivateKey.__init__(self, privkey=privkey, passwd=passwd)
        ExtensionsBase.__init__(self)

        for ext in extensions:
            self.add_extension(ext)

    def build_csr(self,
                  subject: AnyName,
                  individual_extensions: Iterable[ExtensionInput] = ()) -> CertSigningRequest:

        subject_name = as_name(subject)
        csr_ext = _merge_extensions(self._extensions, individual_extensions)

        try:
            builder = CertificateSigningRequestBuilder(
                subject_name=subject_name.to_name(),
                extensions=csr_ext
            )
            csr = builder.sign(private_key=self.private_key, algorithm=self.signature_hash)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise SigningError(f"Could not sign request for '{subject_name}': {e}", subject_name) from e

        return CertSigningRequest(csr)


class RevokedCert(ExtensionsBase):
    def __init__(self,
                 serial_number: int,
                 revocation_date: Union[datetime, int, None] = 0,
                 extensions_or_reason: Union[ReasonFlags, Iterable[x509Extension]] = ()):

        self._sn = serial_number
        self._revdate = convert_timeinfo(revocation_date)

        if isinstance(extensions_or_reason, ReasonFlags):
            exts = (x509Extension(CRLReason.oid, False, CRLReason(extensions_or_reason)),)
        else:
            # Iterable of Extension
            exts = tuple(extensions_or_reason)

        ExtensionsBase.__init__(self, frozen_extensions=exts)

    @classmethod
    def from_revoked_certificate(cls, rcert: RevokedCertificate):
        return RevokedCert(rcert.serial_number, rcert.revocation_date_utc, rcert.extensions)

    @property
    def serial_number(self) -> int:
        return self._sn

    @property
    def revocation_date(self) -> Optional[datetime]:
        return self._revdate

    @property
    def crl_reason(self) -> Optional[ReasonFlags]:
        reason_ext = self.get_extension(CRLReason.oid)
        if reason_ext is None:
            return None
        return reason_ext.value.reason

    def __repr__(self):
        return f"<{self.__class__.__name__} sn='{self._sn}' revocation_date={self._revdate} reason={self.crl_reason}>"


class Crl(ExtensionsBase):
    def __init__(self, crl: Union[str, Path, bytes, CertificateRevocationList]):
        if isinstance(crl, CertificateRevocationList):
            self._crl = crl

        elif isinstance(crl, bytes):
            self._crl = _load_x509_crl(crl)

        elif isinstance(crl, (str, Path)):
            crl = check_file(crl, must_exist=True, argname="crl")
            self._crl = _load_x509_crl(crl.read_bytes())

        else:
            raise TypeError("Unsupported format for CRL given: " + str(type(crl)))

        ExtensionsBase.__init__(self, self._crl.extensions)

        self._issuer = DistinguishedName.from_name(self._crl.issuer)

    @property
    def crl(self) -> CertificateRevocationList:
        return self._crl

    @property
    def issuer(self) -> DistinguishedName:
        return self._issuer

    @property
    def next_update(self) -> Optional[datetime]:
        return self._crl.next_update_utc

    @property
    def last_update(self) -> datetime:
        return self._crl.last_update_utc

    @property
    def crl_number(self) -> Optional[int]:
        if self.get_extension(CRL_NUMBER_OID) is None:
            return None
        return self.extension_value(CRL_NUMBER_OID)

    @property
    def revoked_serial_numbers(self) -> frozenset:
        return frozenset(rc.serial_number for rc in self._crl)

    @property
    def is_valid_by_date(self) -> bool:
        now = datetime.now(timezone.utc)

        if now < self._crl.last_update_utc:
            return False

        if self._crl.next_update_utc is None:
            return True

        return now < self._crl.next_update_utc

    def is_signature_valid(self, pubkey: Union[PublicKey, PublicKeysSupportedTypes]) -> bool:
        if isinstance(pubkey, PublicKey):
            pubkey = pubkey.public_key
        return self._crl.is_signature_valid(pubkey)

    def get_revoked_certificate_by_serial_number(self, serial_number: int) -> Optional[RevokedCert]:
        rc = self._crl.get_revoked_certificate_by_serial_number(serial_number)
        if rc is None:
            return None
        return RevokedCert.from_revoked_certificate(rc)

    def get_revoked_certificate_by_certificate(self, cert: Cert) -> Optional[RevokedCert]:
        return self.get_revoked_certificate_by_serial_number(cert.serial_number)

    def __iter__(self):
        return iter(RevokedCert.from_revoked_certificate(c) for c in self._crl)

    def __len__(self):
        return len(self._crl)

    def __getitem__(self, index: int) -> RevokedCert:
        return RevokedCert.from_revoked_certificate(self._crl[index])

    def to_bytes(self, encoding=serialization.Encoding.PEM) -> bytes:
        return self._crl.public_bytes(encoding=encoding)

    def to_file(self, file: Union[str, Path], encoding=serialization.Encoding.PEM):
        file = check_file(file, must_exist=False, argname="file")
        file.write_bytes(self.to_bytes(encoding=encoding))

    def __eq__(self, other):
        if not isinstance(other, Crl):
            return NotImplemented
        return self._crl == other._crl

    def __hash__(self):
        return hash(self.to_bytes(serialization.Encoding.DER))

    def __repr__(self):
        return f"<{self.__class__.__name__} " \
               f"issuer='{self._issuer!s}' revokes_count={len(self._crl)}, " \
               f"last_update={self._crl.last_update_utc}, next_update={self._crl.next_update_utc}>"


def _load_x509_crl(crl: bytes) -> CertificateRevocationList:
    with suppress(ValueError):
        return load_pem_x509_crl(crl)

    return load_der_x509_crl(crl)


def _load_x509_csr(csr: bytes) -> CertificateSigningRequest:
    with suppress(ValueError):
        return load_pem_x509_csr(csr)

    return load_der_x509_csr(csr)


def _load_x509_certificate(cert: bytes) -> Certificate:
    with suppress(ValueError):
        return load_pem_x509_certificate(cert)

    return load_der_x509_certificate(cert)


def _as_private_key(key: Union[PrivateKey, PrivateKeysSupportedTypes]) -> PrivateKey:
    if isinstance(key, PrivateKey):
        return key
    return PrivateKey(key)


def _as_public_key(key: Union[PublicKey, PublicKeysSupportedTypes]) -> PublicKey:
    if isinstance(key, PublicKey):
        return key
    return PublicKey(key)


def sign_certificate(issuer: AnyName,
                     issuer_private_key: Union[PrivateKey, PrivateKeysSupportedTypes],
                     serial: int,
                     not_before: Union[datetime, int],
                     not_after: Union[datetime, int],
                     subject: AnyName,
                     subject_public_key: Union[PublicKey, PublicKeysSupportedTypes],
                     extensions: Iterable[ExtensionInput] = ()) -> Cert:
    """
    Signs a certificate for subject_public_key.
    :raises ValueError: if not_before is not lower than not_after or serial is negative
    :raises SigningError: if the key, algorithm and serial number are refused while signing
    """
    builder = CertBuilder(_as_private_key(issuer_private_key))
    return builder.create_cert(issuer,
                               (subject, _as_public_key(subject_public_key)),
                               serial_number=serial,
                               not_valid_before=not_before,
                               not_valid_after=not_after,
                               individual_extensions=extensions)


def generate_certificate_request(key_pair: Union[PrivateKey, PrivateKeysSupportedTypes],
                                 subject: AnyName,
                                 extensions: Iterable[ExtensionInput] = ()) -> CertSigningRequest:
    return CsrBuilder(_as_private_key(key_pair)).build_csr(subject, extensions)


def verify_signature(csr: CertSigningRequest) -> bool:
    """True if the request's own public key validates its signature"""
    return csr.signature_valid()


_FINGERPRINT_ALGORITHMS = {
    "SHA-1": hashes.SHA1,
    "SHA-224": hashes.SHA224,
    "SHA-256": hashes.SHA256,
    "SHA-384": hashes.SHA384,
    "SHA-512": hashes.SHA512,
}


def fingerprint(obj: Union[Cert, CertSigningRequest, Crl], algorithm: str = "SHA-256") -> str:
    """Hex digest over the DER encoding"""
    algo = _FINGERPRINT_ALGORITHMS.get(algorithm.upper())
    if algo is None:
        raise ValueError("Unsupported fingerprint algorithm: " + algorithm)

    digest = hashes.Hash(algo())
    digest.update(obj.to_bytes(serialization.Encoding.DER))
    return digest.finalize().hex()
