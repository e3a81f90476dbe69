#!/usr/bin/env python3
# -*- coding: utf-8 -*-

import logging
from pathlib import Path

from pki_helper import PrivateKey
from pki_helper.certs import generate_certificate_request
from pki_helper.errors import RevokedCertificateError
from pki_helper.pem import objs_to_pem_file, pem_to_certs, pem_to_crls
from pki_helper.pki import CertificateAuthority, SignType
from pki_helper.validation import validate_chain

logging.basicConfig(level=logging.INFO)

workdir = Path("/tmp")

# A root CA and an intermediate CA signed by it. Both come with an empty CRL.
root = CertificateAuthority.build_ca("CN=mynetwork root")

intermediate_key = PrivateKey()
intermediate = CertificateAuthority(
    root.issue_intermediate("CN=mynetwork servers", intermediate_key, path_len=0),
    intermediate_key)

# Sign a server request
server_key = PrivateKey()
req = generate_certificate_request(server_key, "CN=vpn.example.org")
server_cert = intermediate.sign_req(req, SignType.Server)
print(server_cert)

chain = [server_cert, intermediate.cert, root.cert]
objs_to_pem_file(chain, workdir / "chain.pem")
objs_to_pem_file([root.crl, intermediate.crl], workdir / "crls.pem")

# Another party checks the chain against the published CRLs
validate_chain(pem_to_certs(workdir / "chain.pem"), pem_to_crls(workdir / "crls.pem"))
print("Chain is valid")

# Revoke the server certificate and publish the new CRL
intermediate.revoke(server_cert)
objs_to_pem_file([root.crl, intermediate.crl], workdir / "crls.pem")

try:
    validate_chain(pem_to_certs(workdir / "chain.pem"), pem_to_crls(workdir / "crls.pem"))
except RevokedCertificateError as e:
    print("Chain rejected:", e)
