# -*- coding: utf-8 -*-

"""
PKIHelper - Revocation check of certificate chains against CRLs
"""

from collections import defaultdict
from datetime import datetime, timezone
from logging import getLogger
from os import environ
from typing import Iterable, Optional

from pki_helper.certs import Cert, Crl
from pki_helper.crl import crl_key_identifier
from pki_helper.errors import RevocationStatusUnknownError, MissingCRLError, ExpiredCRLError, NotYetValidCRLError, \
    InvalidCRLSignatureError, RevokedCertificateError
from pki_helper.keyids import cert_key_identifier, key_identifier
from pki_helper.names import DistinguishedName


logger = getLogger(__name__)

_TRUE_VALUES = ("1", "true", "yes", "on")


def strict_revocation_default() -> bool:
    return environ.get("PKI_HELPER_STRICT_REVOCATION", "").strip().lower() in _TRUE_VALUES


def _key_ids(cert: Cert) -> set[bytes]:
    return {cert_key_identifier(cert), key_identifier(cert), key_identifier(cert, truncate=True)}


class CrlIndex:
    """CRLs grouped by issuer name"""

    def __init__(self, crls: Iterable[Crl]):
        self._by_issuer: dict[DistinguishedName, list[Crl]] = defaultdict(list)
        for crl in crls:
            self._by_issuer[crl.issuer].append(crl)

    def lookup(self, cert: Cert, issuer_cert: Optional[Cert] = None) -> Optional[Crl]:
        """
        The CRL responsible for cert. Name alone is not enough when the CRL carries an authority
        key identifier: it has to name a key identifier of issuer_cert (SKI, type 1 or type 2).
        Without issuer_cert the certificate's own authority key identifier is compared instead.
        The highest CRL number wins.
        """
        if issuer_cert is not None:
            key_ids = _key_ids(issuer_cert)
        else:
            cert_key_id = crl_key_identifier(cert)
            key_ids = None if cert_key_id is None else {cert_key_id}

        matches = []
        for crl in self._by_issuer.get(cert.issuer, ()):
            crl_key_id = crl_key_identifier(crl)
            if key_ids is None or crl_key_id is None or crl_key_id in key_ids:
                matches.append(crl)

        if not matches:
            return None

        return max(matches, key=lambda c: c.crl_number or 0)


def _find_issuer_cert(cert: Cert, certs: Iterable[Cert]) -> Optional[Cert]:
    aki = crl_key_identifier(cert)
    for candidate in certs:
        if candidate.subject != cert.issuer:
            continue
        if aki is None or aki in _key_ids(candidate):
            return candidate
    return None


def _check_certificate(cert: Cert, certs: list[Cert], index: CrlIndex, now: datetime):
    sn = cert.serial_number
    issuer = cert.issuer

    issuer_cert = _find_issuer_cert(cert, certs)
    crl = index.lookup(cert, issuer_cert)
    if crl is None:
        raise MissingCRLError(f"No CRLs found for issuer '{issuer}'", sn, issuer)

    if crl.next_update is not None and now > crl.next_update:
        raise ExpiredCRLError(f"CRL of '{issuer}' expired at {crl.next_update}", sn, issuer)

    if now < crl.last_update:
        raise NotYetValidCRLError(f"CRL of '{issuer}' is not valid before {crl.last_update}", sn, issuer)

    if issuer_cert is None:
        raise InvalidCRLSignatureError(f"Cannot verify CRL of '{issuer}': issuer certificate not in chain",
                                       sn, issuer)

    if not crl.is_signature_valid(issuer_cert):
        raise InvalidCRLSignatureError(f"Cannot verify CRL of '{issuer}'", sn, issuer)

    revoked = crl.get_revoked_certificate_by_serial_number(sn)
    if revoked is not None:
        raise RevokedCertificateError(f"Certificate has been revoked: sn={sn} issuer='{issuer}' "
                                      f"revocation_date={revoked.revocation_date}",
                                      sn, issuer, revoked.revocation_date)


def validate_chain(certs: Iterable[Cert],
                   crls: Iterable[Crl],
                   *,
                   strict: Optional[bool] = None,
                   now: Optional[datetime] = None):
    """
    Checks every certificate of the chain against the CRL of its issuer. The first failure is raised.
    The order of the chain does not matter but it has to contain every issuer.

    :param strict: Report missing, outdated and unverifiable CRLs as RevocationStatusUnknownError
        instead of the specific subclass. Defaults to PKI_HELPER_STRICT_REVOCATION.
    :param now: Point in time for the freshness check. Defaults to the current time.
    :raises RevocationStatusUnknownError: if the revocation status could not be determined
    :raises RevokedCertificateError: if a certificate has been revoked
    """
    if strict is None:
        strict = strict_revocation_default()

    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        raise ValueError("now must be timezone aware.")

    certs = list(certs)
    index = CrlIndex(crls)

    for cert in certs:
        logger.debug("Checking revocation status of sn=%d subject='%s'", cert.serial_number, cert.subject)
        try:
            _check_certificate(cert, certs, index, now)
        except RevocationStatusUnknownError as e:
            logger.warning("Revocation check failed: %s", e)
            if strict:
                raise RevocationStatusUnknownError("Could not determine revocation status", e.serial, e.issuer) from e
            raise
        except RevokedCertificateError as e:
            logger.warning("Revocation check failed: %s", e)
            raise
