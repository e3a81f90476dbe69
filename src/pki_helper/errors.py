# -*- coding: utf-8 -*-

"""
PKIHelper - Exceptions
"""

from datetime import datetime
from typing import Optional, Any


class PKIError(Exception):
    """Base class of all errors raised by this package"""


class MalformedNameError(PKIError, ValueError):
    def __init__(self, msg: str, name: Any = None):
        super().__init__(msg)
        self.name = name


class ExtensionError(PKIError):
    def __init__(self, msg: str, oid: Optional[str] = None):
        super().__init__(msg)
        self.oid = oid


class UnknownOidError(ExtensionError, LookupError):
    def __init__(self, oid: str):
        super().__init__(f"No extension registered for OID {oid}", oid)


class ValueShapeError(ExtensionError, ValueError):
    def __init__(self, oid: str, value: Any, expected: str):
        super().__init__(f"Value {value!r} does not fit extension {oid}. Expected {expected}.", oid)
        self.value = value
        self.expected = expected


class NotFoundError(PKIError, LookupError):
    def __init__(self, msg: str, oid: Optional[str] = None):
        super().__init__(msg)
        self.oid = oid


class SigningError(PKIError):
    def __init__(self, msg: str, subject: Any = None):
        super().__init__(msg)
        self.subject = subject


class ChainValidationError(PKIError):
    """A certificate of a chain failed the revocation check"""

    def __init__(self, msg: str, serial: Optional[int] = None, issuer: Any = None):
        super().__init__(msg)
        self.serial = serial
        self.issuer = issuer


class RevocationStatusUnknownError(ChainValidationError):
    """The revocation status could not be determined.
    Raised as is in strict mode, specialized by the subclasses otherwise."""


class MissingCRLError(RevocationStatusUnknownError):
    pass


class ExpiredCRLError(RevocationStatusUnknownError):
    pass


class NotYetValidCRLError(RevocationStatusUnknownError):
    pass


class InvalidCRLSignatureError(RevocationStatusUnknownError):
    pass


class RevokedCertificateError(ChainValidationError):
    def __init__(self, msg: str, serial: Optional[int] = None, issuer: Any = None,
                 revocation_date: Optional[datetime] = None):
        super().__init__(msg, serial, issuer)
        self.revocation_date = revocation_date


class PemError(PKIError, ValueError):
    def __init__(self, msg: str, expected: Optional[str] = None):
        super().__init__(msg)
        self.expected = expected


class WrongObjectTypeError(PemError):
    pass


class MultipleObjectsError(PemError):
    pass


class EmptyStreamError(PemError):
    pass


class DuplicateCertException(PKIError, ValueError):
    """A serial number is already on the revocation list being built"""
