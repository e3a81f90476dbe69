# -*- coding: utf-8 -*-

"""
PKIHelper
X.509 certificates, signing requests, revocation lists and CRL based chain validation.

This module holds the key material. Certificates and signing requests build on PublicKey,
the builders for certificates, requests and CRLs build on PrivateKey.

Version: 0.1.0
"""

import re
from abc import ABCMeta, abstractmethod
from os import environ
from typing import Union, Optional, Type, Callable
from pathlib import Path
from inspect import isclass

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa, padding, ed25519, ed448

from cryptography.x509 import SubjectKeyIdentifier


__all__ = (
    "PublicKey", "PrivateKey", "KeyAlgorithm", "ECCrypto", "RSACrypto", "Ed25519Crypto", "Ed448Crypto",
    "PublicKeysSupported", "PrivateKeysSupported", "PrivateKeysSupportedTypes", "PublicKeysSupportedTypes",
    "check_file", "PasswordInput", "CryptoDefinition", "sanitize_password", "translate_optional_password",
    "generate_key_pair", "keylength", "DEFAULT_KEY_LENGTH"
)

__VERSION__ = "unknown"
if isinstance(__doc__, str):
    if _m := re.search("^Version: (.*)", __doc__, re.MULTILINE):
        __VERSION__ = _m.group(1)


DEFAULT_KEY_LENGTH = 4096

PublicKeysSupportedTypes = Union[
    ec.EllipticCurvePublicKey,
    rsa.RSAPublicKey,
    ed25519.Ed25519PublicKey,
    ed448.Ed448PublicKey
]

PrivateKeysSupportedTypes = Union[
    ec.EllipticCurvePrivateKey,
    rsa.RSAPrivateKey,
    ed25519.Ed25519PrivateKey,
    ed448.Ed448PrivateKey
]

PasswordInput = Union[str, bytes, bytearray, None]

# For isinstance checks
PublicKeysSupported = ec.EllipticCurvePublicKey, rsa.RSAPublicKey, ed25519.Ed25519PublicKey, ed448.Ed448PublicKey
PrivateKeysSupported = ec.EllipticCurvePrivateKey, rsa.RSAPrivateKey, ed25519.Ed25519PrivateKey, ed448.Ed448PrivateKey


def _check_hash(hash_algorithm: Optional[hashes.HashAlgorithm]) -> Optional[hashes.HashAlgorithm]:
    if hash_algorithm is not None and not isinstance(hash_algorithm, hashes.HashAlgorithm):
        raise TypeError("hash_algorithm must be an instance of hashes.HashAlgorithm or None")
    return hash_algorithm


class KeyAlgorithm(metaclass=ABCMeta):
    """
    Parameters of one public key algorithm.
    Generates private keys, signs and verifies raw bytes and names the hash passed to the x509 builders.
    """
    PUBLIC_KEY_TYPE: type = None

    signature_hash: Optional[hashes.HashAlgorithm] = None

    @classmethod
    @abstractmethod
    def from_public_key(cls, public_key) -> "KeyAlgorithm":
        """Parameters read back from an existing key"""

    @abstractmethod
    def generate(self):
        """New private key"""

    @abstractmethod
    def sign(self, private_key, data: bytes) -> bytes:
        pass

    @abstractmethod
    def verify(self, public_key, sig: bytes, data: bytes):
        """Raises cryptography.exceptions.InvalidSignature on mismatch"""

    def use_signature_hash(self, hash_algorithm: hashes.HashAlgorithm):
        """Takes over the hash of a loaded certificate, CSR or CRL"""
        self.signature_hash = _check_hash(hash_algorithm)

    @property
    @abstractmethod
    def key_length(self) -> int:
        """Key size in bits"""


CryptoDefinition = Union[KeyAlgorithm, Type[KeyAlgorithm]]


class ECCrypto(KeyAlgorithm):
    """ECDSA on a named curve. Defaults to SECP521R1 with SHA-256."""
    PUBLIC_KEY_TYPE = ec.EllipticCurvePublicKey

    def __init__(self,
                 hash_algorithm: Optional[hashes.HashAlgorithm] = None,
                 curve: Optional[ec.EllipticCurve] = None):
        self.signature_hash = _check_hash(hash_algorithm) or hashes.SHA256()

        if curve is not None and not isinstance(curve, ec.EllipticCurve):
            raise TypeError("curve must be an instance of ec.EllipticCurve or None")
        self.curve = curve or ec.SECP521R1()

    @classmethod
    def from_public_key(cls, public_key: ec.EllipticCurvePublicKey) -> "ECCrypto":
        return cls(curve=public_key.curve)

    def generate(self) -> ec.EllipticCurvePrivateKey:
        return ec.generate_private_key(self.curve)

    def sign(self, private_key: ec.EllipticCurvePrivateKey, data: bytes) -> bytes:
        return private_key.sign(data, ec.ECDSA(self.signature_hash))

    def verify(self, public_key: ec.EllipticCurvePublicKey, sig: bytes, data: bytes):
        public_key.verify(sig, data, ec.ECDSA(self.signature_hash))

    @property
    def key_length(self) -> int:
        return self.curve.key_size

    def __repr__(self):
        return f"<{self.__class__.__name__} curve={self.curve.name} hash={self.signature_hash.name}>"


class _EdDSACrypto(KeyAlgorithm):
    """EdDSA hashes internally. The x509 builders need None as hash."""
    PRIVATE_KEY_TYPE: type = None
    KEY_LENGTH = 0

    @classmethod
    def from_public_key(cls, public_key) -> "_EdDSACrypto":
        return cls()

    def generate(self):
        return self.PRIVATE_KEY_TYPE.generate()

    def sign(self, private_key, data: bytes) -> bytes:
        return private_key.sign(data)

    def verify(self, public_key, sig: bytes, data: bytes):
        public_key.verify(sig, data)

    def use_signature_hash(self, hash_algorithm: hashes.HashAlgorithm):
        pass

    @property
    def key_length(self) -> int:
        return self.KEY_LENGTH

    def __repr__(self):
        return f"<{self.__class__.__name__}>"


class Ed25519Crypto(_EdDSACrypto):
    PUBLIC_KEY_TYPE = ed25519.Ed25519PublicKey
    PRIVATE_KEY_TYPE = ed25519.Ed25519PrivateKey
    KEY_LENGTH = 256


class Ed448Crypto(_EdDSACrypto):
    PUBLIC_KEY_TYPE = ed448.Ed448PublicKey
    PRIVATE_KEY_TYPE = ed448.Ed448PrivateKey
    KEY_LENGTH = 456


class RSACrypto(KeyAlgorithm):
    """RSA with SHA-256. Raw byte signatures use PSS, certificates PKCS#1 v1.5."""
    PUBLIC_KEY_TYPE = rsa.RSAPublicKey

    def __init__(self,
                 hash_algorithm: Optional[hashes.HashAlgorithm] = None,
                 key_size: Optional[int] = None,
                 exponent: int = 65537):
        self.signature_hash = _check_hash(hash_algorithm) or hashes.SHA256()
        self.key_size = key_size or DEFAULT_KEY_LENGTH
        self.exponent = exponent

        # cryptography only checks these when generating
        if self.exponent not in (3, 65537):
            raise ValueError("public exponent must be either 3 (for legacy compatibility) or 65537.")
        if self.key_size < 1024:
            raise ValueError("key_size must be at least 1024-bits.")

    @classmethod
    def from_public_key(cls, public_key: rsa.RSAPublicKey) -> "RSACrypto":
        crypto = cls.__new__(cls)
        crypto.signature_hash = hashes.SHA256()
        crypto.key_size = public_key.key_size
        crypto.exponent = public_key.public_numbers().e
        return crypto

    def _padding(self) -> padding.PSS:
        return padding.PSS(mgf=padding.MGF1(self.signature_hash), salt_length=padding.PSS.MAX_LENGTH)

    def generate(self) -> rsa.RSAPrivateKey:
        return rsa.generate_private_key(public_exponent=self.exponent, key_size=self.key_size)

    def sign(self, private_key: rsa.RSAPrivateKey, data: bytes) -> bytes:
        return private_key.sign(data, self._padding(), self.signature_hash)

    def verify(self, public_key: rsa.RSAPublicKey, sig: bytes, data: bytes):
        public_key.verify(sig, data, self._padding(), self.signature_hash)

    @property
    def key_length(self) -> int:
        return self.key_size

    def __repr__(self):
        return f"<{self.__class__.__name__} key_size={self.key_size} exponent={self.exponent}>"


_ALGORITHMS: tuple[Type[KeyAlgorithm], ...] = (RSACrypto, ECCrypto, Ed25519Crypto, Ed448Crypto)


def _algorithm_for(public_key: PublicKeysSupportedTypes) -> KeyAlgorithm:
    for algorithm in _ALGORITHMS:
        if isinstance(public_key, algorithm.PUBLIC_KEY_TYPE):
            return algorithm.from_public_key(public_key)
    raise TypeError("Unsupported key type: " + repr(type(public_key)))


def translate_optional_password(password: PasswordInput = None) -> Optional[bytes]:
    """Password as bytes or None"""
    if password is None:
        return None
    if isinstance(password, str):
        return password.encode("utf-8")
    if isinstance(password, (bytes, bytearray)):
        return bytes(password)
    raise TypeError("Invalid password type: %s" % type(password))


def sanitize_password(passwd: PasswordInput) -> PasswordInput:
    """Empty passwords become None"""
    if isinstance(passwd, (str, bytes, bytearray)):
        return passwd or None
    return passwd


def _load(data: bytes, pem_loader: Callable, der_loader: Callable, supported: tuple, *args):
    """PEM first, DER if the data is no PEM"""
    try:
        key = pem_loader(data, *args)
    except ValueError:
        key = der_loader(data, *args)

    if not isinstance(key, supported):
        raise TypeError("Loaded key type not supported: " + repr(type(key)))
    return key


def _load_public_key(data: bytes) -> PublicKeysSupportedTypes:
    return _load(data, serialization.load_pem_public_key, serialization.load_der_public_key, PublicKeysSupported)


def _load_private_key(data: bytes, password: Optional[bytes]) -> PrivateKeysSupportedTypes:
    # A wrong or missing password raises TypeError or ValueError from cryptography
    return _load(data, serialization.load_pem_private_key, serialization.load_der_private_key,
                 PrivateKeysSupported, password)


def check_file(file: Union[str, Path], must_exist: bool, argname: str) -> Path:
    if isinstance(file, str):
        file = Path(file)
    elif not isinstance(file, Path):
        raise TypeError(f"Argument '{argname}' must be str or Path. Not '{type(file)}'.")

    if must_exist and not file.is_file():
        raise FileNotFoundError(f"File defined in '{argname}' does not exist: {file}")

    return file


class PublicKey:
    """
    Public key with its algorithm parameters.
    Certificates and signing requests are PublicKeys too.
    """

    def __init__(self, pubkey: Union[str, Path, bytes, PublicKeysSupportedTypes, "PublicKey"]):
        """
        :param pubkey:
            str, Path: PEM or DER file
            bytes: PEM or DER data
            cryptography public key
            PublicKey: the key of another PublicKey (Cert, CertSigningRequest, PrivateKey)
        """
        # Subclasses name their source before calling in
        source = getattr(self, "_source", "")

        if isinstance(pubkey, PublicKey):
            self._public_key = pubkey.public_key
            source = source or f"PublicKey: [{pubkey.source}]"

        elif isinstance(pubkey, PublicKeysSupported):
            self._public_key = pubkey
            source = source or f"cryptography [{type(pubkey).__name__}]"

        elif isinstance(pubkey, bytes):
            self._public_key = _load_public_key(pubkey)
            source = source or "public key bytes"

        elif isinstance(pubkey, (str, Path)):
            pubkey = check_file(pubkey, must_exist=True, argname="pubkey")
            self._public_key = _load_public_key(pubkey.read_bytes())
            source = source or f"public key file: {pubkey}"

        else:
            raise TypeError("Unsupported format for public key given: " + str(type(pubkey)))

        self._source = source
        self._crypto_config = _algorithm_for(self._public_key)

    @property
    def crypto_config(self) -> KeyAlgorithm:
        return self._crypto_config

    @property
    def source(self) -> str:
        return self._source or "<unknown source>"

    @property
    def public_key(self) -> PublicKeysSupportedTypes:
        """The cryptography public key"""
        return self._public_key

    @property
    def public_key_digest(self) -> bytes:
        """SHA-1 over the subjectPublicKey bits. Same as a full length key identifier."""
        return SubjectKeyIdentifier.from_public_key(self._public_key).digest

    @property
    def key_length(self) -> int:
        return self._crypto_config.key_length

    def public_key_to_bytes(self,
                            encoding=serialization.Encoding.PEM,
                            fmt=serialization.PublicFormat.SubjectPublicKeyInfo) -> bytes:
        return self._public_key.public_bytes(encoding=encoding, format=fmt)

    def public_key_to_file(self, file: Union[str, Path],
                           encoding=serialization.Encoding.PEM,
                           fmt=serialization.PublicFormat.SubjectPublicKeyInfo):
        file = check_file(file, must_exist=False, argname="file")
        file.write_bytes(self.public_key_to_bytes(encoding, fmt))

    def verify_bytes(self, sig: bytes, data: bytes):
        """
        :raises InvalidSignature: if the signature does not match data and key
        """
        if not isinstance(sig, bytes):
            raise TypeError("sig must be signature as bytes.")

        self._crypto_config.verify(self._public_key, sig, data)

    def same_public_key(self, other: "PublicKey") -> bool:
        return self.public_key == other.public_key

    def __eq__(self, other):
        if not isinstance(other, type(self)):
            return NotImplemented

        return self.public_key == other.public_key

    def __hash__(self):
        return hash(self.public_key_digest)

    def __repr__(self):
        return f"<{self.__class__.__name__}({self._crypto_config!r} {self.public_key_digest.hex(':')})>"


class PrivateKey(PublicKey):
    """
    Private key with its signing functions. A PrivateKey is the whole key pair.
    """
    def __init__(self,
                 privkey: Union[str, Path, bytes, PrivateKeysSupportedTypes, "PrivateKey", CryptoDefinition, None] = None,
                 passwd: PasswordInput = None):
        """
        :param privkey:
            None: new RSA key of the default key length
            str, Path: PEM or DER file
            bytes: PEM or DER data
            cryptography private key
            PrivateKey: the key of another PrivateKey
            KeyAlgorithm class or instance: new key with these parameters
        :param passwd: Password to open the key with. Also protects it when serialized.
        """
        self._password = translate_optional_password(sanitize_password(passwd))

        if privkey is None:
            privkey = RSACrypto(key_size=_default_key_length())

        if isclass(privkey) and issubclass(privkey, KeyAlgorithm):
            privkey = privkey()

        source = getattr(self, "_source", "")

        if isinstance(privkey, PrivateKey):
            self._private_key = privkey.private_key
            source = source or f"PrivateKey: [{privkey.source}]"

        elif isinstance(privkey, PrivateKeysSupported):
            self._private_key = privkey
            source = source or f"cryptography [{type(privkey).__name__}]"

        elif isinstance(privkey, bytes):
            self._private_key = _load_private_key(privkey, self._password)
            source = source or "private key bytes"

        elif isinstance(privkey, (str, Path)):
            privkey = check_file(privkey, must_exist=True, argname="privkey")
            self._private_key = _load_private_key(privkey.read_bytes(), self._password)
            source = source or f"private key file: {privkey}"

        elif isinstance(privkey, KeyAlgorithm):
            self._private_key = privkey.generate()
            source = source or f"generated {privkey!r}"

        else:
            raise TypeError("Unsupported format for private key given: %s" % type(privkey))

        self._source = source
        PublicKey.__init__(self, self._private_key.public_key())

        if isinstance(privkey, KeyAlgorithm):
            # Keep the requested hash
            self._crypto_config = privkey

    def change_password(self, passwd: PasswordInput = None):
        """
        Sets the password used for serializing the key. None stores it unencrypted.
        """
        self._password = translate_optional_password(sanitize_password(passwd))

    def private_key_to_bytes(self, encoding=serialization.Encoding.PEM, fmt=serialization.PrivateFormat.PKCS8) -> bytes:
        if self._password:
            enc = serialization.BestAvailableEncryption(self._password)
        else:
            enc = serialization.NoEncryption()

        return self._private_key.private_bytes(encoding=encoding, format=fmt, encryption_algorithm=enc)

    def private_key_to_file(self, file: Union[str, Path],
                            encoding=serialization.Encoding.PEM, fmt=serialization.PrivateFormat.PKCS8):
        """Writes the key readable by the owner only"""
        file = check_file(file, must_exist=False, argname="file")
        file.write_bytes(self.private_key_to_bytes(encoding, fmt))
        file.chmod(0o600)

    @property
    def private_key(self) -> PrivateKeysSupportedTypes:
        """The cryptography private key"""
        return self._private_key

    @property
    def signature_hash(self) -> Optional[hashes.HashAlgorithm]:
        """Hash algorithm passed to the x509 builders. None for EdDSA keys."""
        return self._crypto_config.signature_hash

    def sign_bytes(self, data: bytes) -> bytes:
        return self._crypto_config.sign(self._private_key, data)


def _default_key_length() -> int:
    return int(environ.get("PKI_HELPER_KEY_LENGTH", DEFAULT_KEY_LENGTH))


def generate_key_pair(key_length: Optional[int] = None) -> PrivateKey:
    """
    Creates a new RSA key pair.
    The key length defaults to 4096 bits or the value of PKI_HELPER_KEY_LENGTH.
    """
    return PrivateKey(RSACrypto(key_size=key_length or _default_key_length()))


def keylength(key: Union[PublicKey, PublicKeysSupportedTypes, PrivateKeysSupportedTypes]) -> int:
    if isinstance(key, PublicKey):
        return key.key_length
    if isinstance(key, PrivateKeysSupported):
        key = key.public_key()
    return _algorithm_for(key).key_length
