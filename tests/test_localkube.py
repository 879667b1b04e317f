import datetime
import ipaddress
import os
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from minikit.localkube import CertificateError, LocalkubeServer, not_found_err
from minikit.servers import ServerNotFoundError, SimpleServer

TEST_IPS = [ipaddress.ip_address("1.2.3.4")]


def _write_cert(cert_path, key_path, ips):
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "minikube")])
    now = datetime.datetime.now(datetime.timezone.utc)
    unique = list(dict.fromkeys(str(ip) for ip in ips))
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=1))
        .add_extension(
            x509.SubjectAlternativeName(
                [x509.IPAddress(ipaddress.ip_address(ip)) for ip in unique]
            ),
            critical=False,
        )
        .sign(key, hashes.SHA256())
    )
    Path(cert_path).write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    Path(key_path).write_bytes(
        key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
    )


@pytest.fixture
def lk(tmp_path):
    (tmp_path / "certs").mkdir()
    return LocalkubeServer(
        localkube_directory=str(tmp_path),
        service_cluster_ip_range=ipaddress.ip_network("10.0.0.0/24"),
    )


def test_should_generate_certs_no_files():
    server = LocalkubeServer(localkube_directory="baddir")
    assert server.should_generate_certs(TEST_IPS) is True


def test_should_generate_certs_one_file(lk):
    Path(lk.public_key_cert_path()).write_bytes(b"")
    assert lk.should_generate_certs(TEST_IPS) is True


def test_should_generate_certs_bad_files(lk):
    Path(lk.public_key_cert_path()).write_bytes(b"")
    Path(lk.private_key_cert_path()).write_bytes(b"")
    assert lk.should_generate_certs(TEST_IPS) is True


def test_should_generate_certs_mismatched_ip(lk):
    _write_cert(lk.public_key_cert_path(), lk.private_key_cert_path(), lk.get_all_ips())
    assert lk.should_generate_certs([ipaddress.ip_address("4.3.2.1")]) is True


def test_should_not_generate_certs(lk):
    ips = lk.get_all_ips()
    _write_cert(lk.public_key_cert_path(), lk.private_key_cert_path(), ips)
    assert lk.should_generate_certs(ips) is False


def test_should_not_generate_certs_with_string_ips(lk):
    _write_cert(lk.public_key_cert_path(), lk.private_key_cert_path(), ["1.2.3.4"])
    assert lk.should_generate_certs(["1.2.3.4"]) is False


def test_load_cert_parses_written_cert(lk):
    _write_cert(lk.public_key_cert_path(), lk.private_key_cert_path(), TEST_IPS)
    cert = lk.load_cert(lk.public_key_cert_path())
    san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    assert san.get_values_for_type(x509.IPAddress) == TEST_IPS


def test_load_cert_empty_file(lk):
    Path(lk.public_key_cert_path()).write_bytes(b"")
    with pytest.raises(CertificateError, match="Unable to decode certificate."):
        lk.load_cert(lk.public_key_cert_path())


def test_load_cert_missing_file(lk):
    with pytest.raises(CertificateError):
        lk.load_cert(os.path.join(lk.certificate_directory(), "missing.crt"))


def test_should_generate_ca_certs(lk):
    assert lk.should_generate_ca_certs() is True
    _write_cert(lk.ca_public_key_cert_path(), lk.ca_private_key_cert_path(), TEST_IPS)
    assert lk.should_generate_ca_certs() is False


def test_get_all_ips_starts_with_service_network(lk):
    ips = lk.get_all_ips()
    assert ips[0] == ipaddress.ip_address("10.0.0.0")


def test_paths(tmp_path):
    server = LocalkubeServer(localkube_directory=str(tmp_path))
    certs = os.path.join(str(tmp_path), "certs")
    assert server.etcd_data_directory() == os.path.join(str(tmp_path), "etcd")
    assert server.dns_data_directory() == os.path.join(str(tmp_path), "dns")
    assert server.certificate_directory() == certs
    assert server.private_key_cert_path() == os.path.join(certs, "apiserver.key")
    assert server.public_key_cert_path() == os.path.join(certs, "apiserver.crt")
    assert server.ca_private_key_cert_path() == os.path.join(certs, "ca.key")
    assert server.ca_public_key_cert_path() == os.path.join(certs, "ca.crt")


def test_urls():
    server = LocalkubeServer(api_server_port=8443)
    assert server.api_server_insecure_url() == "http://127.0.0.1:8080"
    assert server.api_server_secure_url() == "https://0.0.0.0:8443"


def test_add_server():
    server = LocalkubeServer()
    component = SimpleServer("scheduler", 0.2, lambda: None)
    server.add_server(component)
    assert server.servers.get("scheduler") is component
    with pytest.raises(ServerNotFoundError):
        server.servers.get("kubelet")


def test_runtime_config_default():
    assert LocalkubeServer().runtime_config == {"api/all": "true"}


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (None, False),
        (ValueError('services "kube-dns" not found'), True),
        (Exception("boom"), False),
    ],
)
def test_not_found_err(error, expected):
    assert not_found_err(error) is expected