# -*- coding: utf-8 -*-

from typing import Union, Optional
from enum import Enum
from datetime import datetime
from logging import getLogger

from cryptography.x509 import Name as x509Name

from pki_helper import ECCrypto, PrivateKey, PublicKey, PublicKeysSupportedTypes
from pki_helper.certs import Cert, CertSigningRequest, Crl, CertBuilder, RANDOM, _Random, sign_certificate
from pki_helper.crl import CRL_VALIDITY_DAYS, new_crl, revoke_multiple
from pki_helper.errors import SigningError
from pki_helper.extensions import Extension, basic_constraints_for_ca, basic_constraints_for_non_ca, key_usage, \
    ext_key_usages, subject_dns_alt_names, swap_extension, SERVER_AUTH_OID, CLIENT_AUTH_OID
from pki_helper.keyids import subject_key_identifier, authority_key_identifier
from pki_helper.names import DistinguishedName, AnyName, as_name, common_name


logger = getLogger(__name__)


class SignType(Enum):
    Client = 1
    Server = 2


class PKICrypto(ECCrypto):
    pass


def x509_sn(sn: int) -> str:
    """
    Create even number of upper case hex chars
    """
    sn_str = hex(sn)[2:].upper()
    if len(sn_str) % 2 == 1:
        sn_str = "0" + sn_str
    return sn_str


def create_ca_extensions(issuer_key_or_name: Union[PublicKey, PublicKeysSupportedTypes, AnyName],
                         serial_or_subject_key: Union[int, PublicKey, PublicKeysSupportedTypes],
                         subject_public_key: Union[PublicKey, PublicKeysSupportedTypes, None] = None,
                         path_len: Optional[int] = None,
                         truncate: bool = False) -> list[Extension]:
    """
    Standard extensions of a CA certificate.

    create_ca_extensions(issuer_public_key, subject_public_key) identifies the issuer by its key.
    create_ca_extensions(issuer_name, issuer_serial, subject_public_key) identifies the issuer by name and serial.
    """
    if isinstance(issuer_key_or_name, (str, DistinguishedName, x509Name)):
        if subject_public_key is None:
            raise TypeError("subject_public_key is required when the issuer is given by name and serial.")
        aki = authority_key_identifier(issuer=issuer_key_or_name, serial_number=serial_or_subject_key)
        subject_key = subject_public_key
    else:
        aki = authority_key_identifier(issuer_key_or_name)
        subject_key = serial_or_subject_key

    return [
        basic_constraints_for_ca(path_len),
        key_usage({"key_cert_sign", "crl_sign"}),
        subject_key_identifier(subject_key, truncate=truncate),
        aki,
    ]


class CertificateAuthority:
    """
    A CA certificate with its private key and its current CRL.
    Every revocation replaces the CRL by a newly signed one.
    """
    CA_VALIDITY_DAYS = 3650
    CRL_VALIDITY_DAYS = CRL_VALIDITY_DAYS

    def __init__(self, ca_cert: Cert, private_key: PrivateKey, crl: Optional[Crl] = None):
        if not ca_cert.same_public_key(private_key):
            raise ValueError("The private key does not belong to the CA certificate.")

        self._ca_cert = ca_cert
        self._private_key = private_key
        self._crt_builder = self._create_crt_builder()

        if crl is None:
            crl = new_crl(ca_cert.subject, private_key, ca_cert,
                          next_update=self.CRL_VALIDITY_DAYS,
                          extensions=[authority_key_identifier(ca_cert)])
        self._crl = crl

    @classmethod
    def build_ca(cls,
                 name: AnyName,
                 key: Optional[PrivateKey] = None,
                 path_len: Optional[int] = None,
                 serial: int = 1,
                 validity_days: int = CA_VALIDITY_DAYS) -> "CertificateAuthority":
        """Creates a self signed CA and its empty CRL"""
        if key is None:
            key = PrivateKey(PKICrypto)

        ca_name = as_name(name)
        ca_cert = sign_certificate(ca_name, key, serial, -1, validity_days, ca_name, key,
                                   create_ca_extensions(key, key, path_len=path_len))

        logger.info("Created CA '%s' sn=%s", ca_name, x509_sn(serial))
        return cls(ca_cert, key)

    def _create_crt_builder(self) -> CertBuilder:
        crtb = CertBuilder(self._private_key)
        crtb.add_extension(basic_constraints_for_non_ca(True))
        crtb.add_extension(authority_key_identifier(self._ca_cert))
        return crtb

    @property
    def cert(self) -> Cert:
        return self._ca_cert

    @property
    def private_key(self) -> PrivateKey:
        return self._private_key

    @property
    def crl(self) -> Crl:
        return self._crl

    @property
    def name(self) -> DistinguishedName:
        return self._ca_cert.subject

    def issue_intermediate(self,
                           name: AnyName,
                           public_key: Union[PublicKey, PublicKeysSupportedTypes],
                           serial: Union[int, _Random] = RANDOM,
                           path_len: Optional[int] = None,
                           truncate_key_id: bool = False,
                           validity_days: int = CA_VALIDITY_DAYS) -> Cert:
        """
        Signs an intermediate CA certificate. Together with its private key it makes up a new CertificateAuthority.
        :param truncate_key_id: Use a type 2 subject key identifier
        """
        exts = create_ca_extensions(self._private_key, public_key, path_len=path_len, truncate=truncate_key_id)
        exts = swap_extension(exts, authority_key_identifier(self._ca_cert))

        if not isinstance(public_key, PublicKey):
            public_key = PublicKey(public_key)

        cert = CertBuilder(self._private_key).create_cert(
            issuer=self._ca_cert.subject,
            cert_or_csr_or_subject_pubkey=(name, public_key),
            serial_number=serial,
            not_valid_after=validity_days,
            individual_extensions=exts)

        logger.info("Issued intermediate CA '%s' sn=%s", cert.subject, x509_sn(cert.serial_number))
        return cert

    def sign_req(self,
                 csr: CertSigningRequest,
                 signtype: SignType,
                 serial: Union[int, _Random] = RANDOM,
                 validity_start: Union[datetime, int] = -1,
                 validity_end: Union[datetime, int] = 3650) -> Cert:
        """
        Signs a client or server certificate for the request.
        Server certificates get their CN as DNS subject alternative name.
        """
        if not csr.signature_valid():
            raise SigningError("Signature of the signing request is invalid.", csr.subject)

        # Set extensions for cert
        indiv_exts = [subject_key_identifier(csr)]

        if signtype is SignType.Client:
            indiv_exts.append(ext_key_usages((CLIENT_AUTH_OID,), True))
            indiv_exts.append(key_usage({"digital_signature"}, True))

        elif signtype is SignType.Server:
            indiv_exts.append(ext_key_usages((SERVER_AUTH_OID,), True))
            indiv_exts.append(key_usage({"digital_signature", "key_encipherment"}, True))

            subject_cname = common_name(csr.subject)
            if not subject_cname:
                raise ValueError("Server req/csr has no CN")

            indiv_exts.append(subject_dns_alt_names((subject_cname,)))
        else:
            raise ValueError("Unsupported signtype: " + repr(signtype))

        new_crt = self._crt_builder.create_cert(issuer=self._ca_cert.subject,
                                                cert_or_csr_or_subject_pubkey=csr,
                                                serial_number=serial,
                                                not_valid_before=validity_start,
                                                not_valid_after=validity_end,
                                                individual_extensions=indiv_exts)

        logger.info("Signed %s certificate '%s' sn=%s", signtype.name.lower(), new_crt.subject,
                    x509_sn(new_crt.serial_number))
        return new_crt

    def revoke(self, *certs_or_serials: Union[Cert, int], now: Optional[datetime] = None) -> Crl:
        """Revokes all given certificates or serial numbers with a single CRL update"""
        self._crl = revoke_multiple(self._crl, self._private_key, self._ca_cert, certs_or_serials, now)
        return self._crl

    def __repr__(self):
        return f"<{self.__class__.__name__} '{self.name}' sn={x509_sn(self._ca_cert.serial_number)}>"
