# tests/conftest.py
import pytest

from localca.common.config import CAConfig, CAPaths, LeafConfig, build_config
from localca.crypto.ca import create_root_ca

# small keys keep the suite fast; 2048 is the smallest supported size
TEST_BITS = 2048
CA_PASS = "ca-secret"
LEAF_PASS = "leaf-secret"


@pytest.fixture
def ca_paths(tmp_path):
    return CAPaths.in_dir(str(tmp_path / "ca"))


@pytest.fixture
def make_ca(ca_paths):
    def _make(cn="Test Root", days=3650, paths=None, **kw):
        config = build_config(
            CAConfig,
            key_bits=TEST_BITS,
            validity_days=days,
            subject={"common_name": cn},
            passphrase=CA_PASS,
        )
        return create_root_ca(config, paths or ca_paths, **kw)
    return _make


@pytest.fixture
def ca(make_ca):
    return make_ca()


@pytest.fixture
def leaf_config():
    def _make(name="svc", cn="svc.internal", **kw):
        values = dict(
            name=name,
            key_bits=TEST_BITS,
            subject={"common_name": cn},
            key_passphrase=LEAF_PASS,
        )
        values.update(kw)
        return build_config(LeafConfig, **values)
    return _make


@pytest.fixture
def out_dir(tmp_path):
    d = tmp_path / "out"
    d.mkdir()
    return str(d)
