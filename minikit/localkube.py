"""Settings, file layout and certificate checks for an all-in-one local cluster."""

from __future__ import annotations

import ipaddress
import os
import socket
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

import psutil
from cryptography import x509

from minikit.servers import Server, Servers

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address
IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network

SERVER_INTERVAL_MS = 200


class CertificateError(Exception):
    """Raised when a certificate cannot be read or parsed."""


def not_found_err(error: BaseException | None) -> bool:
    """Return True if ``error`` is an API server "not found" error."""
    if error is None:
        return False
    return str(error).endswith("not found")


def _can_read_file(path: str) -> bool:
    try:
        with open(path, "rb"):
            return True
    except OSError:
        return False


def _normalize_ip(ip: object) -> str:
    return str(ipaddress.ip_address(str(ip)))


@dataclass
class LocalkubeServer:
    """Options of a local cluster and the servers that make it up."""

    servers: Servers = field(default_factory=Servers)
    containerized: bool = False
    enable_dns: bool = True
    dns_domain: str = ""
    dns_ip: IPAddress | None = None
    localkube_directory: str = ""
    service_cluster_ip_range: IPNetwork | None = None
    api_server_address: IPAddress = ipaddress.ip_address("0.0.0.0")
    api_server_port: int = 443
    api_server_insecure_address: IPAddress = ipaddress.ip_address("127.0.0.1")
    api_server_insecure_port: int = 8080
    generate_certs: bool = True
    show_version: bool = False
    runtime_config: dict[str, str] = field(default_factory=lambda: {"api/all": "true"})
    node_ip: IPAddress | None = None
    container_runtime: str = ""
    network_plugin: str = ""

    def add_server(self, server: Server) -> None:
        """Append ``server`` to the cluster's servers."""
        self.servers.add(server)

    def etcd_data_directory(self) -> str:
        """Directory holding the etcd data."""
        return os.path.join(self.localkube_directory, "etcd")

    def dns_data_directory(self) -> str:
        """Directory holding the DNS store data."""
        return os.path.join(self.localkube_directory, "dns")

    def certificate_directory(self) -> str:
        """Directory holding the certificates."""
        return os.path.join(self.localkube_directory, "certs")

    def private_key_cert_path(self) -> str:
        """Path of the API server private key."""
        return os.path.join(self.certificate_directory(), "apiserver.key")

    def public_key_cert_path(self) -> str:
        """Path of the API server certificate."""
        return os.path.join(self.certificate_directory(), "apiserver.crt")

    def ca_private_key_cert_path(self) -> str:
        """Path of the CA private key."""
        return os.path.join(self.certificate_directory(), "ca.key")

    def ca_public_key_cert_path(self) -> str:
        """Path of the CA certificate."""
        return os.path.join(self.certificate_directory(), "ca.crt")

    def api_server_secure_url(self) -> str:
        """URL of the API server's TLS listener."""
        return f"https://{self.api_server_address}:{self.api_server_port}"

    def api_server_insecure_url(self) -> str:
        """URL of the API server's plain HTTP listener."""
        return f"http://{self.api_server_insecure_address}:{self.api_server_insecure_port}"

    def load_cert(self, path: str | os.PathLike[str]) -> x509.Certificate:
        """Load a PEM encoded certificate from ``path``."""
        try:
            contents = Path(path).read_bytes()
        except OSError as exc:
            raise CertificateError(str(exc)) from exc
        if b"-----BEGIN" not in contents:
            raise CertificateError("Unable to decode certificate.")
        try:
            return x509.load_pem_x509_certificate(contents)
        except ValueError as exc:
            raise CertificateError(f"Unable to parse certificate: {exc}") from exc

    def should_generate_certs(self, ips: Iterable[object]) -> bool:
        """Return True if the API server certificate is missing, broken or lacks an IP."""
        if not (
            _can_read_file(self.public_key_cert_path())
            and _can_read_file(self.private_key_cert_path())
        ):
            print("Regenerating certs because the files aren't readable")
            return True

        try:
            cert = self.load_cert(self.public_key_cert_path())
        except CertificateError as exc:
            print("Regenerating certs because there was an error loading the certificate: ", exc)
            return True

        try:
            san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
            cert_ips = {str(ip) for ip in san.get_values_for_type(x509.IPAddress)}
        except x509.ExtensionNotFound:
            cert_ips = set()

        for ip in ips:
            if _normalize_ip(ip) not in cert_ips:
                print("Regenerating certs becase an IP is missing: ", ip)
                return True
        return False

    def should_generate_ca_certs(self) -> bool:
        """Return True if the CA certificate is missing or broken."""
        if not (
            _can_read_file(self.ca_public_key_cert_path())
            and _can_read_file(self.ca_private_key_cert_path())
        ):
            print("Regenerating CA certs because the files aren't readable")
            return True

        try:
            self.load_cert(self.ca_public_key_cert_path())
        except CertificateError as exc:
            print("Regenerating CA certs because there was an error loading the certificate: ", exc)
            return True
        return False

    def get_all_ips(self) -> list[IPAddress]:
        """Return the service network address followed by every interface address."""
        ips: list[IPAddress] = []
        if self.service_cluster_ip_range is not None:
            ips.append(self.service_cluster_ip_range.network_address)
        for addresses in psutil.net_if_addrs().values():
            for addr in addresses:
                if addr.family not in (socket.AF_INET, socket.AF_INET6):
                    continue
                try:
                    ips.append(ipaddress.ip_address(addr.address.split("%", 1)[0]))
                except ValueError:
                    print("Skipping: ", addr.address)
        return ips