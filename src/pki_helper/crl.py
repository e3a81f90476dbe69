# -*- coding: utf-8 -*-

"""
PKIHelper - Certificate revocation lists

A CRL is never changed in place. Revoking returns a newly signed CRL with the CRL number advanced by one.
"""

from typing import Union, Optional, Iterable
from pathlib import Path
from datetime import datetime
from logging import getLogger

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.x509 import CertificateRevocationListBuilder, RevokedCertificate, RevokedCertificateBuilder, \
    Name as x509Name, AuthorityKeyIdentifier as x509AuthorityKeyIdentifier
from cryptography.x509.extensions import Extension as x509Extension

from pki_helper import PublicKey, PrivateKey, PasswordInput, CryptoDefinition, PrivateKeysSupportedTypes, \
    PublicKeysSupportedTypes
from pki_helper.certs import Cert, Crl, RevokedCert, ExtensionsBase, ExtensionInput, convert_timeinfo
from pki_helper.errors import DuplicateCertException, InvalidCRLSignatureError, NotFoundError, SigningError
from pki_helper.extensions import to_x509_extension, normalize_extensions, swap_extension, \
    crl_number as crl_number_extension, CRL_NUMBER_OID, AUTHORITY_KEY_IDENTIFIER_OID
from pki_helper.keyids import authority_key_identifier, key_identifier, cert_key_identifier
from pki_helper.names import AnyName, as_name


logger = getLogger(__name__)

CRL_VALIDITY_DAYS = 1825


def _serial_of(item: Union[int, Cert, RevokedCert, RevokedCertificate]) -> int:
    if isinstance(item, bool):
        raise TypeError("Serial number must be an int. Not bool.")
    if isinstance(item, int):
        if item < 0:
            raise ValueError("Serial number must not be negative.")
        return item
    if isinstance(item, (Cert, RevokedCert, RevokedCertificate)):
        return item.serial_number
    raise TypeError("Expected a serial number, Cert or revoked certificate. Got: " + repr(type(item)))


class CrlBuilder(PrivateKey, ExtensionsBase):
    def __init__(self,
                 privkey: Union[str, Path, bytes, PrivateKeysSupportedTypes, PrivateKey, CryptoDefinition],
                 passwd: PasswordInput = None,
                 extensions: Iterable[ExtensionInput] = ()):
        PrivateKey.__init__(self, privkey=privkey, passwd=passwd)
        ExtensionsBase.__init__(self)

        for ext in extensions:
            self.add_extension(ext)

        self._revoked_list: list[RevokedCert] = []
        self._serials: set[int] = set()

    def _add(self, rcert: RevokedCert):
        """Checks for not a duplicate (by serial number) and then adds to the current list"""

        if rcert.serial_number in self:
            raise DuplicateCertException("Serial number is already in crl: " + str(rcert.serial_number))

        self._revoked_list.append(rcert)
        self._serials.add(rcert.serial_number)

    def __contains__(self, item: Union[int, Cert, RevokedCert, RevokedCertificate]):
        try:
            sn = _serial_of(item)
        except (TypeError, ValueError):
            return False

        return sn in self._serials

    def __len__(self):
        return len(self._revoked_list)

    def add_revocation(self, rcert: Union[RevokedCert, RevokedCertificate]):
        """
        Adds a revocation to the current CR list
        """
        if isinstance(rcert, RevokedCert):
            self._add(rcert)
        elif isinstance(rcert, RevokedCertificate):
            self._add(RevokedCert.from_revoked_certificate(rcert))
        else:
            raise TypeError("Unsupported type of rcert. Expected RevokedCert or RevokedCertificate.")

    @staticmethod
    def _build_revocation(rcert: RevokedCert) -> RevokedCertificate:
        builder = RevokedCertificateBuilder(
            serial_number=rcert.serial_number,
            revocation_date=rcert.revocation_date,
            extensions=list(rcert.extensions)
        )
        return builder.build()

    def clear(self):
        self._revoked_list.clear()
        self._serials.clear()

    def build_crl(self,
                  issuer: Union[AnyName, x509Name],
                  last_update: Union[datetime, int] = 0,
                  next_update: Union[datetime, int, None] = CRL_VALIDITY_DAYS
                  ) -> Crl:

        last_ = convert_timeinfo(last_update)
        if last_ is None:
            raise ValueError("last_update is required.")

        next_ = convert_timeinfo(next_update)

        if next_ is not None and next_ < last_:
            raise ValueError("next_update must be later than last_update.")

        issuer_name = issuer if isinstance(issuer, x509Name) else as_name(issuer).to_name()

        try:
            rcerts = [self._build_revocation(rc) for rc in self._revoked_list]

            builder = CertificateRevocationListBuilder(
                issuer_name=issuer_name,
                last_update=last_,
                next_update=next_,
                extensions=list(self._extensions),
                revoked_certificates=rcerts
            )

            crl = builder.sign(private_key=self._private_key, algorithm=self.signature_hash)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise SigningError(f"Could not sign CRL of '{issuer_name.rfc4514_string()}': {e}", issuer) from e

        return Crl(crl)


def new_crl(issuer: AnyName,
            issuer_private_key: Union[PrivateKey, PrivateKeysSupportedTypes],
            issuer_public_key: Union[PublicKey, PublicKeysSupportedTypes],
            this_update: Union[datetime, int] = 0,
            next_update: Union[datetime, int, None] = CRL_VALIDITY_DAYS,
            crl_number: int = 0,
            extensions: Iterable[ExtensionInput] = ()) -> Crl:
    """
    Creates an empty CRL.
    An AuthorityKeyIdentifier (type 1) and a CRLNumber extension are always set.
    Given extensions of the same OID take their place, e.g. a truncated AuthorityKeyIdentifier.
    """
    exts = [authority_key_identifier(issuer_public_key), crl_number_extension(crl_number)]
    for ext in normalize_extensions(extensions):
        exts = swap_extension(exts, ext)

    builder = CrlBuilder(issuer_private_key, extensions=exts)
    crl = builder.build_crl(issuer, this_update, next_update)

    logger.debug("Created CRL number %d for '%s'", crl_number, crl.issuer)
    return crl


def revoke_multiple(crl: Crl,
                    issuer_private_key: Union[PrivateKey, PrivateKeysSupportedTypes],
                    issuer_public_key: Union[PublicKey, PublicKeysSupportedTypes],
                    serials: Iterable[Union[int, Cert]],
                    now: Optional[datetime] = None) -> Crl:
    """
    Returns a new CRL with all given serial numbers revoked.
    The CRL number advances by exactly one. Serial numbers already on the CRL are not added twice.
    thisUpdate becomes now and nextUpdate keeps the distance it had to thisUpdate.
    Every other extension is carried over unchanged.
    :raises InvalidCRLSignatureError: if crl is not signed by the issuer key
    :raises NotFoundError: if crl has no CRLNumber extension
    """
    if not crl.is_signature_valid(issuer_public_key):
        logger.warning("Refusing to revoke into CRL of '%s': signature does not match the issuer key", crl.issuer)
        raise InvalidCRLSignatureError("The CRL is not signed by the given issuer key.", issuer=crl.issuer)

    new_serials = [_serial_of(s) for s in serials]
    new_number = crl_number(crl) + 1

    this_update = convert_timeinfo(now if now is not None else 0)
    next_update = None
    if crl.next_update is not None:
        next_update = this_update + (crl.next_update - crl.last_update)

    exts = []
    for ext in crl.extensions:
        if ext.oid.dotted_string == CRL_NUMBER_OID:
            ext = to_x509_extension(crl_number_extension(new_number))
        exts.append(ext)

    builder = CrlBuilder(issuer_private_key, extensions=exts)

    for rc in crl:
        builder.add_revocation(rc)

    for sn in new_serials:
        if sn in builder:
            logger.debug("Serial %d is already revoked by '%s'", sn, crl.issuer)
            continue
        builder.add_revocation(RevokedCert(sn, this_update))

    updated = builder.build_crl(crl.crl.issuer, this_update, next_update)

    logger.debug("Revoked %s in CRL of '%s', CRL number is now %d", new_serials, crl.issuer, new_number)
    return updated


def revoke(crl: Crl,
           issuer_private_key: Union[PrivateKey, PrivateKeysSupportedTypes],
           issuer_public_key: Union[PublicKey, PublicKeysSupportedTypes],
           serial: Union[int, Cert],
           now: Optional[datetime] = None) -> Crl:
    return revoke_multiple(crl, issuer_private_key, issuer_public_key, (serial,), now)


def is_revoked(crl: Crl, cert_or_serial: Union[int, Cert]) -> bool:
    return crl.get_revoked_certificate_by_serial_number(_serial_of(cert_or_serial)) is not None


def crl_number(crl: Crl) -> int:
    """
    :raises NotFoundError: if the CRL has no CRLNumber extension
    """
    return crl.extension_value(CRL_NUMBER_OID)


def crl_key_identifier(obj: Union[Crl, Cert]) -> Optional[bytes]:
    """Key identifier of the AuthorityKeyIdentifier extension if any"""
    ext: Optional[x509Extension] = obj.get_extension(AUTHORITY_KEY_IDENTIFIER_OID)
    if ext is None or not isinstance(ext.value, x509AuthorityKeyIdentifier):
        return None
    return ext.value.key_identifier


def find_ca_crl(crls: Iterable[Crl], ca_cert: Cert) -> Crl:
    """
    First CRL issued by the CA certificate: issuer equals the certificate's subject and the
    authority key identifier, if present, belongs to the certificate's key.
    :raises NotFoundError: if no CRL matches
    """
    ca_key_ids = {cert_key_identifier(ca_cert), key_identifier(ca_cert), key_identifier(ca_cert, truncate=True)}

    for crl in crls:
        if crl.issuer != ca_cert.subject:
            continue

        key_id = crl_key_identifier(crl)
        if key_id is None or key_id in ca_key_ids:
            return crl

    raise NotFoundError(f"No CRL matching the CA certificate '{ca_cert.subject}' found.")
