# -*- coding: utf-8 -*-

import pytest
from cryptography.x509 import Name, NameAttribute, NameOID

from pki_helper.errors import MalformedNameError
from pki_helper.names import DistinguishedName, parse, render, common_name, cn, dn, as_name, is_valid_name


def test_parse_keeps_string_order():
    name = parse("CN=foo,OU=ops,O=Example")
    assert [a.oid for a in name] == [NameOID.COMMON_NAME, NameOID.ORGANIZATIONAL_UNIT_NAME,
                                     NameOID.ORGANIZATION_NAME]
    assert len(name) == 3

    # Inside the certificate the most specific attribute comes last
    x509_name = name.to_name()
    assert x509_name.rdns[0].get_attributes_for_oid(NameOID.ORGANIZATION_NAME)
    assert x509_name.rdns[-1].get_attributes_for_oid(NameOID.COMMON_NAME)


@pytest.mark.parametrize("dn_string", [
    "CN=foo",
    "CN=foo,O=bar",
    "CN=Example Org\\, LLC,C=DE",
    "CN=host,DC=example,DC=org",
    "E=admin@example.org,CN=admin",
    "UID=jdoe,O=Example",
])
def test_render_round_trip(dn_string):
    assert render(parse(dn_string)) == dn_string
    assert str(parse(dn_string)) == dn_string


@pytest.mark.parametrize("dn_string", ["", "   ", "CN", "XX=foo", "CN=foo,bar"])
def test_parse_malformed(dn_string):
    with pytest.raises(MalformedNameError):
        parse(dn_string)


def test_parse_rejects_non_str():
    with pytest.raises(TypeError):
        parse(b"CN=foo")


def test_common_name():
    assert common_name(parse("CN=foo,O=bar")) == "foo"
    assert common_name("O=bar") == ""
    assert common_name(cn("Example Org, LLC")) == "Example Org, LLC"


def test_dn_builder():
    assert dn(("CN", "a"), ("O", "b")) == parse("CN=a,O=b")
    assert dn(("cn", "a")) == cn("a")

    with pytest.raises(MalformedNameError):
        dn()

    with pytest.raises(MalformedNameError):
        dn(("XX", "a"))

    with pytest.raises(MalformedNameError):
        dn(("CN",))


def test_equality_across_representations():
    name = parse("CN=foo,O=bar")
    x509_name = Name([NameAttribute(NameOID.ORGANIZATION_NAME, "bar"), NameAttribute(NameOID.COMMON_NAME, "foo")])

    assert name == x509_name
    assert name == "CN=foo,O=bar"
    assert name != "CN=foo"
    assert name != "not a name"
    assert hash(name) == hash(DistinguishedName.from_name(x509_name))
    assert as_name(x509_name) == name


def test_is_valid_name():
    assert is_valid_name("CN=foo")
    assert is_valid_name(cn("foo"))
    assert not is_valid_name("foo")
    assert not is_valid_name(None)
