# tests/test_leaf.py
import datetime
import os
import stat
from concurrent.futures import ThreadPoolExecutor
from types import SimpleNamespace

import pytest
from cryptography import x509
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import ExtendedKeyUsageOID

from localca.common.config import DistinguishedName
from localca.common.errors import (
    AlreadyExistsError,
    ChainVerificationError,
    InvalidConfigError,
    MalformedRequestError,
    PersistenceError,
    SigningError,
)
from localca.common.utils import serial_to_hex
from localca.crypto import keys, pki
from localca.crypto.ca import load_ca
from localca.crypto.leaf import issue_leaf
from localca.storage import db as dbmod

from conftest import CA_PASS, LEAF_PASS


def test_leaf_scenario(ca, leaf_config, out_dir):
    leaf = issue_leaf(ca, leaf_config(sans=[{"type": "DNS", "value": "svc.internal"}]), out_dir)
    cert = leaf.cert

    assert pki.san_strings(cert) == ["DNS:svc.internal"]
    eku = cert.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value
    assert ExtendedKeyUsageOID.SERVER_AUTH in eku
    assert ExtendedKeyUsageOID.CLIENT_AUTH in eku
    pki.verify_cert_signed_by_ca(cert, ca.cert)

    bc = cert.extensions.get_extension_for_class(x509.BasicConstraints)
    assert bc.critical and bc.value.ca is False
    ku = cert.extensions.get_extension_for_class(x509.KeyUsage).value
    assert ku.digital_signature and ku.key_encipherment
    assert not ku.key_cert_sign

    assert (cert.not_valid_after_utc - cert.not_valid_before_utc).days == 200
    assert cert.issuer == ca.cert.subject
    pki.check_cn(cert, "svc.internal")


def test_leaf_authority_key_identifier(ca, leaf_config, out_dir):
    leaf = issue_leaf(ca, leaf_config(), out_dir)
    aki = leaf.cert.extensions.get_extension_for_class(x509.AuthorityKeyIdentifier).value
    assert aki.key_identifier == ca.subject_key_identifier().digest


def test_leaf_with_ip_and_second_dns(ca, leaf_config, out_dir):
    config = leaf_config(
        name="mqtt",
        cn="mqtt.internal",
        sans=[
            {"type": "DNS", "value": "mqtt.internal"},
            {"type": "DNS", "value": "broker.internal"},
            {"type": "IP", "value": "192.168.1.69"},
        ],
    )
    leaf = issue_leaf(ca, config, out_dir)
    assert pki.san_strings(leaf.cert) == ["DNS:mqtt.internal", "DNS:broker.internal", "IP:192.168.1.69"]


def test_leaf_files(ca, leaf_config, out_dir):
    leaf = issue_leaf(ca, leaf_config(), out_dir)
    assert set(leaf.paths) == {"key", "csr", "crt"}
    assert stat.S_IMODE(os.stat(leaf.paths["key"]).st_mode) == 0o400
    with open(leaf.paths["key"], "rb") as f:
        key = keys.load_private_key(f.read(), LEAF_PASS)
    assert keys.key_matches_cert(key, leaf.cert)
    with open(leaf.paths["csr"], "rb") as f:
        csr = x509.load_pem_x509_csr(f.read())
    assert csr.is_signature_valid
    with open(leaf.paths["crt"], "rb") as f:
        assert pki.load_cert(f.read()) == leaf.cert


def test_serials_unique_and_persisted(ca, leaf_config, out_dir):
    start = ca.serial.read()
    serials = [issue_leaf(ca, leaf_config(name=f"svc{i}"), out_dir).serial for i in range(5)]
    assert len(set(serials)) == 5
    assert serials == [start + i for i in range(1, 6)]
    assert ca.serial.read() == serials[-1]
    recorded = {r["serial_hex"] for r in dbmod.list_issued(ca.paths.store)}
    assert recorded == {serial_to_hex(s) for s in serials}


def test_recovers_serial_from_store(ca, leaf_config, out_dir):
    first = issue_leaf(ca, leaf_config(name="a"), out_dir)
    # simulate a crash after the store commit but before the serial file write
    ca.serial.write(first.serial - 1)
    second = issue_leaf(ca, leaf_config(name="b"), out_dir)
    assert second.serial == first.serial + 1


def test_leaf_never_outlives_ca(make_ca, leaf_config, out_dir):
    ca = make_ca(days=30)
    with pytest.raises(InvalidConfigError, match="after the CA certificate expires"):
        issue_leaf(ca, leaf_config(), out_dir)
    assert os.listdir(out_dir) == []


def test_leaf_validity_clamped_on_request(make_ca, leaf_config, out_dir):
    ca = make_ca(days=30)
    leaf = issue_leaf(ca, leaf_config(clamp_validity=True), out_dir)
    assert leaf.not_after == ca.not_after
    pki.verify_cert_signed_by_ca(leaf.cert, ca.cert)


def test_expired_leaf_fails_verification(make_ca, leaf_config, out_dir):
    ca = make_ca(days=30)
    leaf = issue_leaf(ca, leaf_config(clamp_validity=True), out_dir)
    later = leaf.not_after + datetime.timedelta(days=1)
    with pytest.raises(ChainVerificationError):
        pki.verify_cert_signed_by_ca(leaf.cert, ca.cert, at=later)


def test_refuses_existing_leaf(ca, leaf_config, out_dir):
    issue_leaf(ca, leaf_config(), out_dir)
    serial = ca.serial.read()
    with pytest.raises(AlreadyExistsError):
        issue_leaf(ca, leaf_config(), out_dir)
    assert ca.serial.read() == serial
    reissued = issue_leaf(ca, leaf_config(), out_dir, overwrite=True)
    assert reissued.serial == serial + 1


def test_wrong_ca_passphrase_consumes_no_serial(ca, ca_paths):
    serial = ca.serial.read()
    with pytest.raises(SigningError):
        load_ca(ca_paths, "not-the-passphrase")
    assert ca.serial.read() == serial


def test_store_failure_consumes_no_serial_and_reports_partials(ca, leaf_config, out_dir, monkeypatch):
    serial = ca.serial.read()

    def broken(*a, **kw):
        raise PersistenceError("disk full")

    monkeypatch.setattr(dbmod, "record_issued", broken)
    with pytest.raises(PersistenceError) as exc:
        issue_leaf(ca, leaf_config(), out_dir)
    assert ca.serial.read() == serial
    assert sorted(os.path.basename(p) for p in exc.value.partial_paths) == ["svc.csr", "svc.key"]


def test_malformed_request_rejected():
    with pytest.raises(MalformedRequestError):
        pki.check_csr(SimpleNamespace(is_signature_valid=False))


def test_chain_verification_rejects_foreign_ca(ca, make_ca, leaf_config, out_dir, tmp_path):
    from localca.common.config import CAPaths

    other = make_ca(cn="Other Root", paths=CAPaths.in_dir(str(tmp_path / "other")))
    leaf = issue_leaf(ca, leaf_config(), out_dir)
    with pytest.raises(ChainVerificationError):
        pki.verify_cert_signed_by_ca(leaf.cert, other.cert)


def test_leaf_cannot_act_as_ca(ca, leaf_config, out_dir):
    leaf = issue_leaf(ca, leaf_config(), out_dir)
    assert not pki.may_sign_certificates(leaf.cert)
    with pytest.raises(ChainVerificationError):
        pki.verify_cert_signed_by_ca(leaf.cert, leaf.cert)


def test_pkcs12_with_password(ca, leaf_config, out_dir):
    leaf = issue_leaf(ca, leaf_config(pkcs12=True, pkcs12_password="p12pw"), out_dir)
    with open(leaf.paths["p12"], "rb") as f:
        data = f.read()
    key, cert, extra = pkcs12.load_key_and_certificates(data, b"p12pw")
    assert cert == leaf.cert
    assert extra == [ca.cert]
    assert key.private_numbers() == leaf.key.private_numbers()
    with pytest.raises(ValueError):
        pkcs12.load_key_and_certificates(data, b"wrong")


def test_pkcs12_without_password(ca, leaf_config, out_dir):
    leaf = issue_leaf(ca, leaf_config(pkcs12=True), out_dir)
    with open(leaf.paths["p12"], "rb") as f:
        _key, cert, _extra = pkcs12.load_key_and_certificates(f.read(), None)
    assert cert == leaf.cert


def test_describe(ca, leaf_config, out_dir):
    leaf = issue_leaf(ca, leaf_config(sans=[{"type": "IP", "value": "10.0.0.5"}]), out_dir)
    info = pki.describe(leaf.cert)
    assert info["basic_constraints"] == "CA:FALSE"
    assert info["san"] == ["DNS:svc.internal", "IP:10.0.0.5"]
    assert info["eku"] == ["serverAuth", "clientAuth"]
    assert pki.describe(ca.cert)["basic_constraints"] == "CA:TRUE, pathlen:1"


def test_loaded_ca_issues(ca, ca_paths, leaf_config, out_dir):
    loaded = load_ca(ca_paths, CA_PASS)
    leaf = issue_leaf(loaded, leaf_config(), out_dir)
    pki.verify_cert_signed_by_ca(leaf.cert, ca.cert)


def test_concurrent_issuers_get_distinct_serials(ca, ca_paths, leaf_config, out_dir):
    start = ca.serial.read()

    def issue_one(i):
        loaded = load_ca(ca_paths, CA_PASS)
        return issue_leaf(loaded, leaf_config(name=f"svc{i}"), out_dir).serial

    with ThreadPoolExecutor(max_workers=6) as pool:
        serials = list(pool.map(issue_one, range(6)))

    assert len(set(serials)) == 6
    assert sorted(serials) == list(range(start + 1, start + 7))
    assert ca.serial.read() == max(serials)
    assert len(dbmod.list_issued(ca_paths.store)) == 6


def test_unicode_common_name_gets_idna_san(ca, leaf_config, out_dir):
    leaf = issue_leaf(ca, leaf_config(cn="café.internal"), out_dir)
    assert pki.san_strings(leaf.cert) == ["DNS:xn--caf-dma.internal"]
    pki.check_cn(leaf.cert, "café.internal")


def test_name_builders_raise_config_errors():
    overlong = DistinguishedName.model_construct(
        country="US", state="s", locality="l", organization="o", organizational_unit="ou",
        common_name="x" * 70, email=None,
    )
    with pytest.raises(InvalidConfigError):
        pki.build_name(overlong)
    with pytest.raises(InvalidConfigError):
        pki.general_names([SimpleNamespace(type="DNS", value="café.internal")])
