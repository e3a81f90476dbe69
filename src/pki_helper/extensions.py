# -*- coding: utf-8 -*-

"""
PKIHelper - X.509 extension registry

Every supported extension OID has one row describing the Python value it carries and how that value
is translated to and from cryptography's extension types, which do the DER work.
Extensions without a row are kept as RawExtension so they survive a decode/encode cycle unchanged.
"""

import ipaddress
from dataclasses import dataclass, field
from typing import Union, Optional, Any, Callable, Iterable, Mapping, Tuple

import asn1crypto.core
from cryptography import x509
from cryptography.x509 import ObjectIdentifier

from pki_helper.errors import UnknownOidError, ValueShapeError, NotFoundError
from pki_helper.names import DistinguishedName, as_name


# Well known OIDs
SUBJECT_KEY_IDENTIFIER_OID = "2.5.29.14"
KEY_USAGE_OID = "2.5.29.15"
SUBJECT_ALT_NAME_OID = "2.5.29.17"
ISSUER_ALT_NAME_OID = "2.5.29.18"
BASIC_CONSTRAINTS_OID = "2.5.29.19"
CRL_NUMBER_OID = "2.5.29.20"
DELTA_CRL_INDICATOR_OID = "2.5.29.27"
AUTHORITY_KEY_IDENTIFIER_OID = "2.5.29.35"
EXTENDED_KEY_USAGE_OID = "2.5.29.37"
NETSCAPE_COMMENT_OID = "2.16.840.1.113730.1.13"

# Vendor arcs for node identity extensions
NODE_REGISTERED_EXT_ARC = "1.3.6.1.4.1.34380.1.1"
NODE_PRIVATE_EXT_ARC = "1.3.6.1.4.1.34380.1.2"
NODE_AUTH_EXT_ARC = "1.3.6.1.4.1.34380.1.3"

NODE_UID_OID = NODE_REGISTERED_EXT_ARC + ".1"
NODE_INSTANCE_ID_OID = NODE_REGISTERED_EXT_ARC + ".2"
NODE_IMAGE_NAME_OID = NODE_REGISTERED_EXT_ARC + ".3"
NODE_PRESHARED_KEY_OID = NODE_REGISTERED_EXT_ARC + ".4"

_STRING_VALUED_ARCS = (NODE_REGISTERED_EXT_ARC, NODE_PRIVATE_EXT_ARC, NODE_AUTH_EXT_ARC)

# Extended key usages
SERVER_AUTH_OID = "1.3.6.1.5.5.7.3.1"
CLIENT_AUTH_OID = "1.3.6.1.5.5.7.3.2"

# Key usage flag names mapped to cryptography's KeyUsage keywords
KEY_USAGE_FLAGS: dict[str, str] = {
    "digital_signature": "digital_signature",
    "non_repudiation": "content_commitment",
    "key_encipherment": "key_encipherment",
    "data_encipherment": "data_encipherment",
    "key_agreement": "key_agreement",
    "key_cert_sign": "key_cert_sign",
    "crl_sign": "crl_sign",
    "encipher_only": "encipher_only",
    "decipher_only": "decipher_only",
}


def is_subtree_of(parent_oid: str, child_oid: str) -> bool:
    """
    True if child_oid lies strictly below parent_oid.
    Compares the dotted components, so 1.2.3 is no parent of 1.2.34 and no OID is its own subtree.
    """
    parent = parent_oid.split(".")
    child = child_oid.split(".")
    return len(child) > len(parent) and child[:len(parent)] == parent


# Value types

@dataclass(frozen=True)
class BasicConstraints:
    is_ca: bool
    path_len_constraint: Optional[int] = None


@dataclass(frozen=True)
class GeneralNames:
    dns_name: Tuple[str, ...] = ()
    ip: Tuple[str, ...] = ()
    uri: Tuple[str, ...] = ()
    email: Tuple[str, ...] = ()
    directory_name: Tuple[DistinguishedName, ...] = ()

    def __bool__(self):
        return any((self.dns_name, self.ip, self.uri, self.email, self.directory_name))


@dataclass(frozen=True)
class AuthorityKeyIdentifier:
    key_identifier: Optional[bytes] = None
    issuer: Optional[GeneralNames] = None
    serial_number: Optional[int] = None


@dataclass(frozen=True)
class Extension:
    """An extension with a value of the shape registered for its OID"""
    oid: str
    critical: bool
    value: Any


@dataclass(frozen=True)
class RawExtension:
    """An extension this registry has no row for. Carries the DER value as is."""
    oid: str
    critical: bool
    data: bytes = field(repr=False)


AnyExtension = Union[Extension, RawExtension]


# Shape checks. Each returns the canonical form of the value or raises ValueShapeError.

def _check_basic_constraints(oid: str, value) -> BasicConstraints:
    if isinstance(value, Mapping):
        value = BasicConstraints(is_ca=value.get("is_ca"), path_len_constraint=value.get("path_len_constraint"))

    if not isinstance(value, BasicConstraints) or not isinstance(value.is_ca, bool):
        raise ValueShapeError(oid, value, "BasicConstraints(is_ca: bool, path_len_constraint: Optional[int])")

    plc = value.path_len_constraint
    if plc is not None:
        if isinstance(plc, bool) or not isinstance(plc, int) or plc < 0:
            raise ValueShapeError(oid, value, "a non-negative path_len_constraint")
        if not value.is_ca:
            raise ValueShapeError(oid, value, "no path_len_constraint for non-CA certificates")

    return value


def _check_key_usage(oid: str, value) -> frozenset:
    if isinstance(value, str) or not isinstance(value, Iterable):
        raise ValueShapeError(oid, value, "a set of key usage flag names")

    flags = frozenset(value)
    unknown = flags - KEY_USAGE_FLAGS.keys()
    if unknown or not flags:
        raise ValueShapeError(oid, value, "a non-empty set of " + ", ".join(KEY_USAGE_FLAGS))

    if flags & {"encipher_only", "decipher_only"} and "key_agreement" not in flags:
        raise ValueShapeError(oid, value, "key_agreement together with encipher_only or decipher_only")

    return flags


def _check_oid_sequence(oid: str, value) -> Tuple[str, ...]:
    if isinstance(value, str) or not isinstance(value, Iterable):
        raise ValueShapeError(oid, value, "a sequence of dotted OID strings")

    result = tuple(value)
    if not result:
        raise ValueShapeError(oid, value, "a non-empty sequence of dotted OID strings")

    for item in result:
        if not isinstance(item, str):
            raise ValueShapeError(oid, value, "a sequence of dotted OID strings")
        try:
            ObjectIdentifier(item)
        except ValueError:
            raise ValueShapeError(oid, value, "a sequence of dotted OID strings") from None

    return result


def _coerce_general_names(oid: str, value) -> GeneralNames:
    if isinstance(value, Mapping):
        unknown = set(value) - set(GeneralNames.__dataclass_fields__)
        if unknown:
            raise ValueShapeError(oid, value, "general name types " + ", ".join(GeneralNames.__dataclass_fields__))
        if any(isinstance(v, (str, bytes)) for v in value.values()):
            raise ValueShapeError(oid, value, "sequences of general names")
        try:
            value = GeneralNames(**{k: tuple(v) for k, v in value.items()})
        except TypeError:
            raise ValueShapeError(oid, value, "sequences of general names") from None

    if not isinstance(value, GeneralNames):
        raise ValueShapeError(oid, value, "GeneralNames or a mapping of general name types")

    for kind in ("dns_name", "ip", "uri", "email"):
        items = getattr(value, kind)
        if not isinstance(items, tuple) or not all(isinstance(i, str) for i in items):
            raise ValueShapeError(oid, value, f"{kind} as a tuple of strings")

    for item in value.ip:
        try:
            ipaddress.ip_address(item)
        except ValueError:
            raise ValueShapeError(oid, value, "valid IP addresses") from None

    try:
        dirnames = tuple(as_name(n) for n in value.directory_name)
    except (TypeError, ValueError):
        raise ValueShapeError(oid, value, "directory names as distinguished names") from None

    if dirnames != value.directory_name:
        value = GeneralNames(value.dns_name, value.ip, value.uri, value.email, dirnames)

    if not value:
        raise ValueShapeError(oid, value, "at least one general name")

    return value


def _check_bytes(oid: str, value) -> bytes:
    if not isinstance(value, (bytes, bytearray)) or not value:
        raise ValueShapeError(oid, value, "non-empty bytes")
    return bytes(value)


def _check_authority_key_identifier(oid: str, value) -> AuthorityKeyIdentifier:
    if isinstance(value, Mapping):
        try:
            value = AuthorityKeyIdentifier(**value)
        except TypeError:
            raise ValueShapeError(oid, value, "key_identifier, issuer and serial_number") from None

    if not isinstance(value, AuthorityKeyIdentifier):
        raise ValueShapeError(oid, value, "AuthorityKeyIdentifier")

    key_id = value.key_identifier
    if key_id is not None:
        key_id = _check_bytes(oid, key_id)

    issuer = value.issuer
    if issuer is not None:
        issuer = _coerce_general_names(oid, issuer)

    serial = value.serial_number
    if serial is not None and (isinstance(serial, bool) or not isinstance(serial, int) or serial < 0):
        raise ValueShapeError(oid, value, "a non-negative serial_number")

    if (issuer is None) != (serial is None):
        raise ValueShapeError(oid, value, "issuer and serial_number both set or both unset")

    if key_id is None and issuer is None:
        raise ValueShapeError(oid, value, "a key identifier or issuer and serial_number")

    return AuthorityKeyIdentifier(key_id, issuer, serial)


def _check_non_negative_int(oid: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueShapeError(oid, value, "a non-negative integer")
    return value


def _check_str(oid: str, value) -> str:
    if not isinstance(value, str):
        raise ValueShapeError(oid, value, "a str")
    return value


def _check_ia5_str(oid: str, value) -> str:
    value = _check_str(oid, value)
    if not value.isascii():
        raise ValueShapeError(oid, value, "an ASCII string")
    return value


# Translation to and from cryptography's extension types

def _general_names_to_x509(names: GeneralNames) -> list[x509.GeneralName]:
    result: list[x509.GeneralName] = []
    result.extend(x509.DNSName(n) for n in names.dns_name)
    result.extend(x509.IPAddress(ipaddress.ip_address(n)) for n in names.ip)
    result.extend(x509.UniformResourceIdentifier(n) for n in names.uri)
    result.extend(x509.RFC822Name(n) for n in names.email)
    result.extend(x509.DirectoryName(n.to_name()) for n in names.directory_name)
    return result


def _general_names_from_x509(names: Iterable[x509.GeneralName]) -> GeneralNames:
    names = list(names)
    return GeneralNames(
        dns_name=tuple(n.value for n in names if isinstance(n, x509.DNSName)),
        ip=tuple(str(n.value) for n in names if isinstance(n, x509.IPAddress)),
        uri=tuple(n.value for n in names if isinstance(n, x509.UniformResourceIdentifier)),
        email=tuple(n.value for n in names if isinstance(n, x509.RFC822Name)),
        directory_name=tuple(DistinguishedName.from_name(n.value) for n in names if isinstance(n, x509.DirectoryName)),
    )


def _key_usage_to_x509(flags: frozenset) -> x509.KeyUsage:
    kwargs = {keyword: name in flags for name, keyword in KEY_USAGE_FLAGS.items()}
    return x509.KeyUsage(**kwargs)


def _key_usage_from_x509(ku: x509.KeyUsage) -> frozenset:
    flags = set()
    for name, keyword in KEY_USAGE_FLAGS.items():
        if keyword in ("encipher_only", "decipher_only") and not ku.key_agreement:
            # cryptography refuses to read these without key_agreement
            continue
        if getattr(ku, keyword):
            flags.add(name)
    return frozenset(flags)


def _aki_to_x509(aki: AuthorityKeyIdentifier) -> x509.AuthorityKeyIdentifier:
    return x509.AuthorityKeyIdentifier(
        key_identifier=aki.key_identifier,
        authority_cert_issuer=_general_names_to_x509(aki.issuer) if aki.issuer is not None else None,
        authority_cert_serial_number=aki.serial_number,
    )


def _aki_from_x509(aki: x509.AuthorityKeyIdentifier) -> AuthorityKeyIdentifier:
    issuer = None
    if aki.authority_cert_issuer is not None:
        issuer = _general_names_from_x509(aki.authority_cert_issuer)
    return AuthorityKeyIdentifier(aki.key_identifier, issuer, aki.authority_cert_serial_number)


def _der_string_to_x509(asn1_type: type) -> Callable[[str, str], x509.UnrecognizedExtension]:
    def _encode(oid: str, value: str) -> x509.UnrecognizedExtension:
        return x509.UnrecognizedExtension(ObjectIdentifier(oid), asn1_type(value).dump())
    return _encode


def _der_string_from_x509(ext: x509.UnrecognizedExtension) -> str:
    """
    Reads an ASN.1 string value. Older node extensions were written as the bare UTF-8 bytes
    without any ASN.1 framing, those are returned as they are.
    """
    data = ext.value
    try:
        parsed = asn1crypto.core.load(data, strict=True)
    except ValueError:
        parsed = None

    if isinstance(parsed, asn1crypto.core.AbstractString):
        return parsed.native

    return data.decode("utf-8")


@dataclass(frozen=True)
class ExtensionRow:
    name: str
    x509_type: type
    check: Callable[[str, Any], Any]
    to_x509: Callable[[str, Any], x509.ExtensionType]
    from_x509: Callable[[Any], Any]


_ROWS = (
    (BASIC_CONSTRAINTS_OID, ExtensionRow(
        "BasicConstraints", x509.BasicConstraints, _check_basic_constraints,
        lambda oid, v: x509.BasicConstraints(ca=v.is_ca, path_length=v.path_len_constraint),
        lambda e: BasicConstraints(e.ca, e.path_length))),
    (KEY_USAGE_OID, ExtensionRow(
        "KeyUsage", x509.KeyUsage, _check_key_usage,
        lambda oid, v: _key_usage_to_x509(v),
        _key_usage_from_x509)),
    (EXTENDED_KEY_USAGE_OID, ExtensionRow(
        "ExtendedKeyUsage", x509.ExtendedKeyUsage, _check_oid_sequence,
        lambda oid, v: x509.ExtendedKeyUsage([ObjectIdentifier(o) for o in v]),
        lambda e: tuple(o.dotted_string for o in e))),
    (SUBJECT_ALT_NAME_OID, ExtensionRow(
        "SubjectAlternativeName", x509.SubjectAlternativeName, _coerce_general_names,
        lambda oid, v: x509.SubjectAlternativeName(_general_names_to_x509(v)),
        _general_names_from_x509)),
    (ISSUER_ALT_NAME_OID, ExtensionRow(
        "IssuerAlternativeName", x509.IssuerAlternativeName, _coerce_general_names,
        lambda oid, v: x509.IssuerAlternativeName(_general_names_to_x509(v)),
        _general_names_from_x509)),
    (SUBJECT_KEY_IDENTIFIER_OID, ExtensionRow(
        "SubjectKeyIdentifier", x509.SubjectKeyIdentifier, _check_bytes,
        lambda oid, v: x509.SubjectKeyIdentifier(v),
        lambda e: e.digest)),
    (AUTHORITY_KEY_IDENTIFIER_OID, ExtensionRow(
        "AuthorityKeyIdentifier", x509.AuthorityKeyIdentifier, _check_authority_key_identifier,
        lambda oid, v: _aki_to_x509(v),
        _aki_from_x509)),
    (CRL_NUMBER_OID, ExtensionRow(
        "CRLNumber", x509.CRLNumber, _check_non_negative_int,
        lambda oid, v: x509.CRLNumber(v),
        lambda e: e.crl_number)),
    (DELTA_CRL_INDICATOR_OID, ExtensionRow(
        "DeltaCRLIndicator", x509.DeltaCRLIndicator, _check_non_negative_int,
        lambda oid, v: x509.DeltaCRLIndicator(v),
        lambda e: e.crl_number)),
    (NETSCAPE_COMMENT_OID, ExtensionRow(
        "NetscapeComment", x509.UnrecognizedExtension, _check_ia5_str,
        _der_string_to_x509(asn1crypto.core.IA5String),
        _der_string_from_x509)),
)

REGISTRY: dict[str, ExtensionRow] = dict(_ROWS)

_NODE_STRING_ROW = ExtensionRow(
    "NodeString", x509.UnrecognizedExtension, _check_str,
    _der_string_to_x509(asn1crypto.core.UTF8String),
    _der_string_from_x509)

for _oid in (NODE_UID_OID, NODE_INSTANCE_ID_OID, NODE_IMAGE_NAME_OID, NODE_PRESHARED_KEY_OID):
    REGISTRY[_oid] = _NODE_STRING_ROW


def lookup_row(oid: str) -> Optional[ExtensionRow]:
    """Row for the OID. Anything below the node extension arcs is a UTF-8 string."""
    row = REGISTRY.get(oid)
    if row is not None:
        return row

    for arc in _STRING_VALUED_ARCS:
        if is_subtree_of(arc, oid):
            return _NODE_STRING_ROW

    return None


def _oid_string(oid: Union[str, ObjectIdentifier]) -> str:
    if isinstance(oid, ObjectIdentifier):
        return oid.dotted_string
    if isinstance(oid, str):
        return oid
    raise TypeError("oid must be a dotted string or an ObjectIdentifier. Got: " + repr(type(oid)))


def encode(oid: Union[str, ObjectIdentifier], value, critical: bool = False) -> Extension:
    """
    Checks the value against the shape registered for the OID and returns the extension with its canonical value.
    :raises UnknownOidError: if no row exists for the OID
    :raises ValueShapeError: if the value does not fit
    """
    oid = _oid_string(oid)
    row = lookup_row(oid)
    if row is None:
        raise UnknownOidError(oid)

    if not isinstance(critical, bool):
        raise TypeError("critical must be a bool.")

    return Extension(oid, critical, row.check(oid, value))


def encode_value(oid: Union[str, ObjectIdentifier], value) -> bytes:
    """DER encoding of the extension value alone"""
    ext = encode(oid, value)
    return to_x509_extension(ext).value.public_bytes()


def to_x509_extension(ext: Union[AnyExtension, x509.Extension]) -> x509.Extension:
    if isinstance(ext, x509.Extension):
        return ext

    if isinstance(ext, RawExtension):
        oid = ObjectIdentifier(ext.oid)
        return x509.Extension(oid, ext.critical, x509.UnrecognizedExtension(oid, ext.data))

    if isinstance(ext, Extension):
        row = lookup_row(ext.oid)
        if row is None:
            raise UnknownOidError(ext.oid)
        value = row.check(ext.oid, ext.value)
        return x509.Extension(ObjectIdentifier(ext.oid), ext.critical, row.to_x509(ext.oid, value))

    raise TypeError("Expected Extension, RawExtension or cryptography Extension. Got: " + repr(type(ext)))


def from_x509_extension(ext: x509.Extension) -> AnyExtension:
    oid = ext.oid.dotted_string
    row = lookup_row(oid)

    if row is None or not isinstance(ext.value, row.x509_type):
        return RawExtension(oid, ext.critical, ext.value.public_bytes())

    try:
        value = row.from_x509(ext.value)
    except ValueError:
        # Not decodable as the registered shape, e.g. binary data below a node arc
        return RawExtension(oid, ext.critical, ext.value.public_bytes())

    return Extension(oid, ext.critical, value)


def normalize_extensions(extensions) -> list[AnyExtension]:
    """
    Accepts an iterable of extensions in any supported form, or an object carrying an
    ``extensions`` attribute (certificates, signing requests, CRLs).
    """
    if hasattr(extensions, "extensions"):
        extensions = extensions.extensions

    result = []
    for ext in extensions:
        if isinstance(ext, x509.Extension):
            result.append(from_x509_extension(ext))
        elif isinstance(ext, (Extension, RawExtension)):
            result.append(ext)
        else:
            raise TypeError("Unsupported extension type: " + repr(type(ext)))
    return result


def find_extension(extensions, oid: Union[str, ObjectIdentifier]) -> Optional[AnyExtension]:
    oid = _oid_string(oid)
    for ext in normalize_extensions(extensions):
        if ext.oid == oid:
            return ext
    return None


def decode(extensions, oid: Union[str, ObjectIdentifier]):
    """
    Value of the extension with the given OID.
    Unknown extensions return their raw DER bytes.
    :raises NotFoundError: if the extension is absent
    """
    oid = _oid_string(oid)
    ext = find_extension(extensions, oid)
    if ext is None:
        raise NotFoundError(f"Extension {oid} not found.", oid)

    if isinstance(ext, RawExtension):
        return ext.data
    return ext.value


def swap_extension(extensions: Iterable[AnyExtension], extension: AnyExtension) -> list[AnyExtension]:
    """Replaces the extension of the same OID or appends it"""
    result = [e for e in normalize_extensions(extensions) if e.oid != extension.oid]
    result.append(extension)
    return result


def check_unique_oids(extensions: Iterable[x509.Extension]):
    seen = set()
    for ext in extensions:
        if ext.oid in seen:
            raise ValueError("Extension " + ext.oid.dotted_string + " has already been set before.")
        seen.add(ext.oid)


# Builders

def basic_constraints_for_ca(path_len_constraint: Optional[int] = None) -> Extension:
    return encode(BASIC_CONSTRAINTS_OID, BasicConstraints(True, path_len_constraint), True)


def basic_constraints_for_non_ca(critical: bool = True) -> Extension:
    return encode(BASIC_CONSTRAINTS_OID, BasicConstraints(False, None), critical)


def key_usage(flags: Iterable[str], critical: bool = True) -> Extension:
    return encode(KEY_USAGE_OID, flags, critical)


def key_usage_builder(
    digital_signature: bool = False,
    non_repudiation: bool = False,
    key_encipherment: bool = False,
    data_encipherment: bool = False,
    key_agreement: bool = False,
    key_cert_sign: bool = False,
    crl_sign: bool = False,
    encipher_only: bool = False,
    decipher_only: bool = False,
    critical: bool = True
) -> Extension:
    flags = {name for name, enabled in (
        ("digital_signature", digital_signature),
        ("non_repudiation", non_repudiation),
        ("key_encipherment", key_encipherment),
        ("data_encipherment", data_encipherment),
        ("key_agreement", key_agreement),
        ("key_cert_sign", key_cert_sign),
        ("crl_sign", crl_sign),
        ("encipher_only", encipher_only),
        ("decipher_only", decipher_only),
    ) if enabled}
    return key_usage(flags, critical)


def ext_key_usages(oids: Iterable[str], critical: bool = False) -> Extension:
    return encode(EXTENDED_KEY_USAGE_OID, oids, critical)


def subject_alt_names(names: Union[GeneralNames, Mapping[str, Iterable]], critical: bool = False) -> Extension:
    return encode(SUBJECT_ALT_NAME_OID, names, critical)


def subject_dns_alt_names(dns_names: Iterable[str], critical: bool = False) -> Extension:
    return subject_alt_names(GeneralNames(dns_name=tuple(dns_names)), critical)


def issuer_alt_names(names: Union[GeneralNames, Mapping[str, Iterable]], critical: bool = False) -> Extension:
    return encode(ISSUER_ALT_NAME_OID, names, critical)


def netscape_comment(comment: str, critical: bool = False) -> Extension:
    return encode(NETSCAPE_COMMENT_OID, comment, critical)


def node_uid(uid: str, critical: bool = False) -> Extension:
    return encode(NODE_UID_OID, uid, critical)


def node_instance_id(instance_id: str, critical: bool = False) -> Extension:
    return encode(NODE_INSTANCE_ID_OID, instance_id, critical)


def node_image_name(image_name: str, critical: bool = False) -> Extension:
    return encode(NODE_IMAGE_NAME_OID, image_name, critical)


def node_preshared_key(preshared_key: str, critical: bool = False) -> Extension:
    return encode(NODE_PRESHARED_KEY_OID, preshared_key, critical)


def crl_number(number: int) -> Extension:
    return encode(CRL_NUMBER_OID, number, False)


def delta_crl_indicator(number: int) -> Extension:
    return encode(DELTA_CRL_INDICATOR_OID, number, True)
