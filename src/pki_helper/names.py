# -*- coding: utf-8 -*-

"""
PKIHelper - X.500 distinguished names
"""

from typing import Union, Optional, Iterable, Iterator, Tuple, Protocol, runtime_checkable

from cryptography.x509 import NameAttribute, Name as x509Name, NameOID, ObjectIdentifier

from pki_helper.errors import MalformedNameError


# Attribute types accepted in distinguished name strings. Keys are upper case.
ATTRIBUTE_TYPES: dict[str, ObjectIdentifier] = {
    "CN": NameOID.COMMON_NAME,
    "C": NameOID.COUNTRY_NAME,
    "L": NameOID.LOCALITY_NAME,
    "ST": NameOID.STATE_OR_PROVINCE_NAME,
    "STREET": NameOID.STREET_ADDRESS,
    "O": NameOID.ORGANIZATION_NAME,
    "OU": NameOID.ORGANIZATIONAL_UNIT_NAME,
    "DC": NameOID.DOMAIN_COMPONENT,
    "UID": NameOID.USER_ID,
    "E": NameOID.EMAIL_ADDRESS,
    "EMAILADDRESS": NameOID.EMAIL_ADDRESS,
    "SERIALNUMBER": NameOID.SERIAL_NUMBER,
    "T": NameOID.TITLE,
    "GIVENNAME": NameOID.GIVEN_NAME,
    "SURNAME": NameOID.SURNAME,
}

_KNOWN_OIDS = frozenset(ATTRIBUTE_TYPES.values())

# Keywords used when rendering. Types without an entry are rendered by cryptography's defaults.
_RENDER_KEYWORDS: dict[ObjectIdentifier, str] = {
    NameOID.EMAIL_ADDRESS: "E",
    NameOID.SERIAL_NUMBER: "SERIALNUMBER",
    NameOID.TITLE: "T",
    NameOID.GIVEN_NAME: "GIVENNAME",
    NameOID.SURNAME: "SURNAME",
}

AnyName = Union["DistinguishedName", x509Name, str]


class DistinguishedName:
    """
    Ordered X.500 name. Attributes are kept in string order (most specific first),
    which is the reverse of the RDN sequence order inside the certificate.
    """

    @classmethod
    def from_name(cls, name: x509Name) -> "DistinguishedName":
        """Converts a cryptography Name. Names read from foreign objects are not checked against the type table."""
        new_dn = cls.__new__(cls)
        new_dn._attributes = tuple(attr for rdn in reversed(name.rdns) for attr in rdn)
        return new_dn

    @classmethod
    def from_pairs(cls, pairs: Iterable[Tuple[str, str]]) -> "DistinguishedName":
        attributes = []
        for pair in pairs:
            if not isinstance(pair, tuple) or len(pair) != 2:
                raise MalformedNameError(f"Expected (attribute, value) pairs. Got: {pair!r}", pair)
            attr_type, value = pair
            if not isinstance(attr_type, str) or not isinstance(value, str):
                raise MalformedNameError(f"Attribute type and value must be strings: {pair!r}", pair)

            oid = ATTRIBUTE_TYPES.get(attr_type.upper())
            if oid is None:
                raise MalformedNameError(f"Unsupported attribute type: {attr_type}", pair)

            try:
                attributes.append(NameAttribute(oid, value))
            except ValueError as e:
                raise MalformedNameError(f"Invalid value for {attr_type}: {e}", pair) from e

        return cls(attributes)

    def __init__(self, attributes: Iterable[NameAttribute]):
        self._attributes: Tuple[NameAttribute, ...] = tuple(attributes)

        if not self._attributes:
            raise MalformedNameError("A distinguished name needs at least one attribute.")

        for attr in self._attributes:
            if not isinstance(attr, NameAttribute):
                raise TypeError("Attributes must be NameAttribute instances. Got: " + repr(attr))
            if attr.oid not in _KNOWN_OIDS:
                raise MalformedNameError(f"Unsupported attribute type: {attr.oid.dotted_string}", attr)

    @property
    def attributes(self) -> Tuple[NameAttribute, ...]:
        return self._attributes

    def get_oid(self, oid: ObjectIdentifier, default=None) -> Optional[NameAttribute]:
        for o in self._attributes:
            if o.oid == oid:
                return o
        return default

    def to_name(self) -> x509Name:
        return x509Name(list(reversed(self._attributes)))

    def rfc4514_string(self) -> str:
        return self.to_name().rfc4514_string(_RENDER_KEYWORDS)

    def _key(self) -> Tuple[Tuple[str, str], ...]:
        return tuple((attr.oid.dotted_string, attr.value) for attr in self._attributes)

    def __eq__(self, other):
        if isinstance(other, DistinguishedName):
            return self._key() == other._key()

        if isinstance(other, x509Name):
            return self._key() == DistinguishedName.from_name(other)._key()

        if isinstance(other, str):
            try:
                return self._key() == parse(other)._key()
            except MalformedNameError:
                return False

        return NotImplemented

    def __hash__(self):
        return hash(self._key())

    def __iter__(self) -> Iterator[NameAttribute]:
        return iter(self._attributes)

    def __len__(self):
        return len(self._attributes)

    def __repr__(self):
        return f"<DistinguishedName '{self.rfc4514_string()}'>"

    def __str__(self):
        return self.rfc4514_string()


def parse(dn_string: str) -> DistinguishedName:
    """
    Parses an RFC 4514 string like "CN=foo,O=bar".
    :raises MalformedNameError: on empty input, attribute types without value or unsupported attribute types
    """
    if not isinstance(dn_string, str):
        raise TypeError("dn_string must be a str. Not " + repr(type(dn_string)))

    if not dn_string.strip():
        raise MalformedNameError("Empty distinguished name.", dn_string)

    try:
        name = x509Name.from_rfc4514_string(dn_string, ATTRIBUTE_TYPES)
    except ValueError as e:
        raise MalformedNameError(f"Malformed distinguished name '{dn_string}': {e}", dn_string) from e

    attributes = [attr for rdn in reversed(name.rdns) for attr in rdn]
    return DistinguishedName(attributes)


def render(name: DistinguishedName) -> str:
    return name.rfc4514_string()


def common_name(name: AnyName) -> str:
    """Value of the first CN attribute or an empty string"""
    attr = as_name(name).get_oid(NameOID.COMMON_NAME)
    if attr is None:
        return ""
    return attr.value


def cn(common_name_value: str) -> DistinguishedName:
    return DistinguishedName.from_pairs([("CN", common_name_value)])


def dn(*pairs: Tuple[str, str]) -> DistinguishedName:
    """dn(("CN", "foo"), ("O", "bar")) -> CN=foo,O=bar"""
    return DistinguishedName.from_pairs(pairs)


def as_name(name: AnyName) -> DistinguishedName:
    if isinstance(name, DistinguishedName):
        return name
    if isinstance(name, x509Name):
        return DistinguishedName.from_name(name)
    if isinstance(name, str):
        return parse(name)
    raise TypeError("Expected DistinguishedName, x509 Name or str. Got: " + repr(type(name)))


def is_valid_name(name) -> bool:
    if isinstance(name, DistinguishedName):
        return True
    if isinstance(name, str):
        try:
            parse(name)
        except MalformedNameError:
            return False
        return True
    return False


@runtime_checkable
class HasSubject(Protocol):
    @property
    def subject(self) -> DistinguishedName:
        ...


@runtime_checkable
class HasIssuer(Protocol):
    @property
    def issuer(self) -> DistinguishedName:
        ...


def _coerce_for_compare(name: AnyName) -> Optional[DistinguishedName]:
    try:
        return as_name(name)
    except MalformedNameError:
        return None


def has_subject(obj: HasSubject, name: AnyName) -> bool:
    other = _coerce_for_compare(name)
    return other is not None and obj.subject == other


def issued_by(obj: HasIssuer, name: AnyName) -> bool:
    other = _coerce_for_compare(name)
    return other is not None and obj.issuer == other
