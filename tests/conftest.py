# -*- coding: utf-8 -*-

from datetime import datetime, timedelta, timezone

import pytest
from cryptography.hazmat.primitives.asymmetric import ec

from pki_helper import PrivateKey, ECCrypto, RSACrypto
from pki_helper.names import cn
from pki_helper.certs import generate_certificate_request
from pki_helper.pki import CertificateAuthority, SignType


def new_ec_key() -> PrivateKey:
    return PrivateKey(ECCrypto(curve=ec.SECP256R1()))


@pytest.fixture
def key_factory():
    return new_ec_key


@pytest.fixture
def issuer_key() -> PrivateKey:
    return new_ec_key()


@pytest.fixture
def subject_key() -> PrivateKey:
    return new_ec_key()


@pytest.fixture(scope="session")
def rsa_key() -> PrivateKey:
    return PrivateKey(RSACrypto(key_size=2048))


@pytest.fixture
def issuer_name():
    return cn("Test CA: localhost")


@pytest.fixture
def subject_name():
    return cn("foo.example.org")


@pytest.fixture
def not_before() -> datetime:
    return datetime.now(timezone.utc) - timedelta(days=1)


@pytest.fixture
def not_after() -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=5 * 365)


@pytest.fixture
def root_ca() -> CertificateAuthority:
    return CertificateAuthority.build_ca("CN=Root CA", key=new_ec_key())


@pytest.fixture
def intermediate_ca(root_ca) -> CertificateAuthority:
    key = new_ec_key()
    cert = root_ca.issue_intermediate("CN=Intermediate CA", key, serial=2)
    return CertificateAuthority(cert, key)


@pytest.fixture
def leaf_cert(intermediate_ca):
    csr = generate_certificate_request(new_ec_key(), "CN=leaf.example.org")
    return intermediate_ca.sign_req(csr, SignType.Server, serial=3)
