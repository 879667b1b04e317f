"""Bridge that mirrors cluster services, endpoints and pods into SkyDNS records."""

from __future__ import annotations

import json
import logging
import posixpath
import re
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, Protocol

logger = logging.getLogger(__name__)

SKYDNS_PATH_PREFIX = "skydns"
SERVICE_SUBDOMAIN = "svc"
POD_SUBDOMAIN = "pod"
CLUSTER_IP_NONE = "None"
POD_HOSTNAMES_ANNOTATION = "endpoints.beta.kubernetes.io/hostnames-map"
RETRY_DELAY = 0.05

_FNV32_OFFSET = 0x811C9DC5
_FNV32_PRIME = 0x01000193
_DNS1123_LABEL_RE = re.compile(r"[a-z0-9]([-a-z0-9]*[a-z0-9])?", re.ASCII)
_DNS1123_LABEL_MAX = 63


class EtcdMutationTimeout(RuntimeError):
    """Raised when an etcd mutation keeps failing past the allowed time."""


@dataclass
class SkyMessage:
    """A SkyDNS service record as stored in etcd."""

    host: str = ""
    port: int = 0
    priority: int = 0
    weight: int = 0
    text: str = ""
    mail: bool = False
    ttl: int = 0
    target_strip: int = 0
    group: str = ""

    def to_json(self) -> str:
        """Return the compact JSON form, leaving out empty fields."""
        fields = (
            ("host", self.host),
            ("port", self.port),
            ("priority", self.priority),
            ("weight", self.weight),
            ("text", self.text),
            ("mail", self.mail),
            ("ttl", self.ttl),
            ("targetstrip", self.target_strip),
            ("group", self.group),
        )
        data = {key: value for key, value in fields if value}
        text = json.dumps(data, separators=(",", ":"), ensure_ascii=False)
        for raw, escaped in (("<", "\\u003c"), (">", "\\u003e"), ("&", "\\u0026")):
            text = text.replace(raw, escaped)
        return text


@dataclass
class ServicePort:
    """A port exposed by a service."""

    name: str = ""
    port: int = 0
    protocol: str = ""


@dataclass
class Service:
    """A cluster service."""

    name: str
    namespace: str = ""
    cluster_ip: str = ""
    ports: list[ServicePort] = field(default_factory=list)

    @property
    def ip_is_set(self) -> bool:
        """True unless the service is headless."""
        return self.cluster_ip not in ("", CLUSTER_IP_NONE)


@dataclass
class EndpointPort:
    """A port served by the addresses of an endpoint subset."""

    name: str = ""
    port: int = 0
    protocol: str = ""


@dataclass
class EndpointSubset:
    """Addresses and the ports they serve."""

    addresses: list[str] = field(default_factory=list)
    ports: list[EndpointPort] = field(default_factory=list)


@dataclass
class Endpoints:
    """The endpoints object belonging to a service."""

    name: str
    namespace: str = ""
    subsets: list[EndpointSubset] = field(default_factory=list)
    annotations: dict[str, str] = field(default_factory=dict)


@dataclass
class Pod:
    """A pod with its assigned IP, which may still be empty."""

    name: str
    namespace: str = ""
    pod_ip: str = ""


def _meta_namespace_key(obj: Any) -> str:
    namespace = getattr(obj, "namespace", "")
    name = obj.name
    return f"{namespace}/{name}" if namespace else name


class MemoryStore:
    """An in-memory cache of objects keyed by ``namespace/name``."""

    def __init__(self, objects: list[Any] | None = None) -> None:
        self._items: dict[str, Any] = {}
        for obj in objects or ():
            self.add(obj)

    def __len__(self) -> int:
        return len(self._items)

    def add(self, obj: Any) -> None:
        """Add or replace ``obj``."""
        self._items[_meta_namespace_key(obj)] = obj

    def delete(self, obj: Any) -> None:
        """Remove ``obj`` if present."""
        self._items.pop(_meta_namespace_key(obj), None)

    def get_by_key(self, key: str) -> Any | None:
        """Return the object stored under ``key``, or None."""
        return self._items.get(key)


class EtcdClient(Protocol):
    """The operations the bridge needs from an etcd client."""

    def set(self, path: str, value: str, ttl: int = 0) -> None: ...

    def raw_get(self, key: str, sort: bool = False, recursive: bool = False) -> int: ...

    def delete(self, path: str, recursive: bool = False) -> None: ...


class MemoryEtcd:
    """An in-memory key space with the etcd operations the bridge uses."""

    def __init__(self) -> None:
        self.records: dict[str, str] = {}

    def _subtree(self, path: str) -> list[str]:
        prefix = path.rstrip("/") + "/"
        return [key for key in self.records if key == path or key.startswith(prefix)]

    def set(self, path: str, value: str, ttl: int = 0) -> None:
        """Store ``value`` under ``path``."""
        self.records[path] = value

    def raw_get(self, key: str, sort: bool = False, recursive: bool = False) -> int:
        """Return the HTTP status a lookup of ``key`` would give."""
        return HTTPStatus.OK if self._subtree(key) else HTTPStatus.NOT_FOUND

    def delete(self, path: str, recursive: bool = False) -> None:
        """Delete ``path``, and everything below it when ``recursive``."""
        keys = self._subtree(path) if recursive else [path] if path in self.records else []
        if not keys:
            raise KeyError(f"Key not found: {path}")
        for key in keys:
            del self.records[key]


def sky_path(domain: str) -> str:
    """Return the etcd path SkyDNS uses for ``domain``."""
    name = domain[:-1] if domain.endswith(".") else domain
    labels = name.split(".") if name else []
    return posixpath.normpath(posixpath.join(f"/{SKYDNS_PATH_PREFIX}/", *reversed(labels)))


def get_sky_msg(ip: str, port: int) -> SkyMessage:
    """Return the record pointing at ``ip`` and ``port``."""
    return SkyMessage(host=ip, port=port, priority=10, weight=10, ttl=30)


def sanitize_ip(ip: str) -> str:
    """Turn an IP into a DNS label by replacing dots with dashes."""
    return ip.replace(".", "-")


def build_port_segment_string(port_name: str, protocol: str) -> str:
    """Return ``_name._protocol``, or an empty string if either is missing."""
    if not port_name:
        return ""
    if not protocol:
        logger.error("Port Protocol not set. port segment string cannot be created.")
        return ""
    return f"_{port_name}._{protocol.lower()}"


def build_dns_name_string(*args: str) -> str:
    """Join labels into a name, each later label going in front."""
    result = ""
    for label in args:
        result = label if result == "" else f"{label}.{result}"
    return result


def get_hash(text: str) -> str:
    """Return the 32-bit FNV-1a hash of ``text`` in lower case hex."""
    value = _FNV32_OFFSET
    for byte in text.encode("utf-8"):
        value ^= byte
        value = (value * _FNV32_PRIME) & 0xFFFFFFFF
    return f"{value:x}"


def is_dns1123_label(value: str) -> bool:
    """Return True if ``value`` is a valid DNS-1123 label."""
    return len(value) <= _DNS1123_LABEL_MAX and _DNS1123_LABEL_RE.fullmatch(value) is not None


def _pod_hostname(annotations: dict[str, str], ip: str) -> str | None:
    serialized = annotations.get(POD_HOSTNAMES_ANNOTATION, "")
    if not serialized:
        return None
    records = json.loads(serialized)
    record = records.get(ip) if isinstance(records, dict) else None
    if not isinstance(record, dict):
        return None
    for key, value in record.items():
        if key.lower() == "hostname" and isinstance(value, str):
            return value
    return None


class Kube2Sky:
    """Writes DNS records for services, endpoints and pods into etcd."""

    def __init__(
        self,
        etcd_client: EtcdClient,
        domain: str = "cluster.local",
        etcd_mutation_timeout: float = 10.0,
        endpoints_store: MemoryStore | None = None,
        services_store: MemoryStore | None = None,
        pods_store: MemoryStore | None = None,
    ) -> None:
        self.etcd_client = etcd_client
        self.domain = domain if domain.endswith(".") else f"{domain}."
        self.etcd_mutation_timeout = etcd_mutation_timeout
        self.endpoints_store = endpoints_store if endpoints_store is not None else MemoryStore()
        self.services_store = services_store if services_store is not None else MemoryStore()
        self.pods_store = pods_store if pods_store is not None else MemoryStore()
        self._lock = threading.Lock()

    def remove_dns(self, subdomain: str) -> None:
        """Remove ``subdomain`` and everything below it from etcd."""
        logger.debug("Removing %s from DNS", subdomain)
        path = sky_path(subdomain)
        if self.etcd_client.raw_get(path, False, True) == HTTPStatus.NOT_FOUND:
            logger.debug("Subdomain %r does not exist in etcd", subdomain)
            return
        self.etcd_client.delete(path, True)

    def write_sky_record(self, subdomain: str, data: str) -> None:
        """Write one record with no TTL."""
        self.etcd_client.set(sky_path(subdomain), data, 0)

    def new_headless_service(self, subdomain: str, service: Service) -> None:
        """Create an A record for every address behind a headless service."""
        with self._lock:
            endpoints = self.endpoints_store.get_by_key(_meta_namespace_key(service))
            if endpoints is None:
                logger.info(
                    "Could not find endpoints for service %r in namespace %r. "
                    "DNS records will be created once endpoints show up.",
                    service.name,
                    service.namespace,
                )
                return
            if isinstance(endpoints, Endpoints):
                self.generate_records_for_headless_service(subdomain, endpoints, service)

    def generate_records_for_headless_service(
        self, subdomain: str, endpoints: Endpoints, service: Service
    ) -> None:
        """Write A and SRV records for each address of ``endpoints``."""
        logger.debug("Endpoints Annotations: %s", endpoints.annotations)
        for subset in endpoints.subsets:
            for ip in subset.addresses:
                record_value = get_sky_msg(ip, 0).to_json()
                record_label = get_hash(record_value)
                hostname = _pod_hostname(endpoints.annotations, ip)
                if hostname is not None and is_dns1123_label(hostname):
                    record_label = hostname
                record_key = build_dns_name_string(subdomain, record_label)
                logger.debug("Setting DNS record: %s -> %r", record_key, record_value)
                self.write_sky_record(record_key, record_value)
                for port in subset.ports:
                    segment = build_port_segment_string(port.name, port.protocol)
                    if segment:
                        self.generate_srv_record(
                            subdomain, segment, record_label, record_key, port.port
                        )

    def _service_from_endpoints(self, endpoints: Endpoints) -> Service | None:
        obj = self.services_store.get_by_key(_meta_namespace_key(endpoints))
        if obj is None:
            logger.info(
                "could not find service for endpoint %r in namespace %r",
                endpoints.name,
                endpoints.namespace,
            )
            return None
        if isinstance(obj, Service):
            return obj
        raise TypeError(f"got a non service object in services store {obj!r}")

    def add_dns_using_endpoints(self, subdomain: str, endpoints: Endpoints) -> None:
        """Rewrite the records of the headless service behind ``endpoints``."""
        with self._lock:
            service = self._service_from_endpoints(endpoints)
            if service is None or service.ip_is_set:
                return
            self.remove_dns(subdomain)
            self.generate_records_for_headless_service(subdomain, endpoints, service)

    def handle_endpoint_add(self, obj: Any) -> None:
        """React to added or updated endpoints."""
        if isinstance(obj, Endpoints):
            name = build_dns_name_string(self.domain, SERVICE_SUBDOMAIN, obj.namespace, obj.name)
            self.mutate_etcd_or_die(lambda: self.add_dns_using_endpoints(name, obj))

    def _pod_name(self, pod: Pod) -> str:
        return build_dns_name_string(
            self.domain, POD_SUBDOMAIN, pod.namespace, sanitize_ip(pod.pod_ip)
        )

    def handle_pod_create(self, obj: Any) -> None:
        """Add a record for a pod once it has an IP."""
        if isinstance(obj, Pod) and obj.pod_ip:
            name = self._pod_name(obj)
            self.mutate_etcd_or_die(lambda: self.generate_records_for_pod(name, obj))

    def handle_pod_update(self, old: Any, new: Any) -> None:
        """Move a pod's record when its IP changes."""
        old_ok = isinstance(old, Pod)
        new_ok = isinstance(new, Pod)
        if old_ok and new_ok:
            if old.pod_ip != new.pod_ip:
                self.handle_pod_delete(old)
                self.handle_pod_create(new)
        elif new_ok:
            self.handle_pod_create(new)
        elif old_ok:
            self.handle_pod_delete(old)

    def handle_pod_delete(self, obj: Any) -> None:
        """Remove the record of a deleted pod."""
        if isinstance(obj, Pod) and obj.pod_ip:
            name = self._pod_name(obj)
            self.mutate_etcd_or_die(lambda: self.remove_dns(name))

    def generate_records_for_pod(self, subdomain: str, pod: Pod) -> None:
        """Write the A record of a pod."""
        record_value = get_sky_msg(pod.pod_ip, 0).to_json()
        record_key = build_dns_name_string(subdomain, get_hash(record_value))
        logger.debug(
            "Setting DNS record: %s -> %r, with recordKey: %s", subdomain, record_value, record_key
        )
        self.write_sky_record(record_key, record_value)

    def generate_records_for_portal_service(self, subdomain: str, service: Service) -> None:
        """Write the A record and SRV records of a service with a cluster IP."""
        record_value = get_sky_msg(service.cluster_ip, 0).to_json()
        record_label = get_hash(record_value)
        record_key = build_dns_name_string(subdomain, record_label)
        logger.debug(
            "Setting DNS record: %s -> %r, with recordKey: %s", subdomain, record_value, record_key
        )
        self.write_sky_record(record_key, record_value)
        for port in service.ports:
            segment = build_port_segment_string(port.name, port.protocol)
            if segment:
                self.generate_srv_record(subdomain, segment, record_label, subdomain, port.port)

    def generate_srv_record(
        self,
        subdomain: str,
        port_segment: str,
        record_name: str,
        cname: str,
        port_number: int,
    ) -> None:
        """Write an SRV record pointing at ``cname`` and ``port_number``."""
        record_key = build_dns_name_string(subdomain, port_segment, record_name)
        self.write_sky_record(record_key, get_sky_msg(cname, port_number).to_json())

    def add_dns(self, subdomain: str, service: Service) -> None:
        """Write the records of ``service``."""
        if not service.ip_is_set:
            self.new_headless_service(subdomain, service)
            return
        if not service.ports:
            logger.info("Unexpected service with no ports, this should not have happend: %s", service)
        self.generate_records_for_portal_service(subdomain, service)

    def mutate_etcd_or_die(self, mutator: Callable[[], object]) -> None:
        """Retry ``mutator`` until it succeeds or the mutation timeout passes."""
        deadline = time.monotonic() + self.etcd_mutation_timeout
        while True:
            if time.monotonic() >= deadline:
                raise EtcdMutationTimeout(
                    f"Failed to mutate etcd for {self.etcd_mutation_timeout}s using mutator: {mutator!r}"
                )
            try:
                mutator()
            except Exception as exc:  # noqa: BLE001 - every failure is retried
                logger.info(
                    "Failed to mutate etcd using mutator: %r due to: %s. Will retry in: %ss",
                    mutator,
                    exc,
                    RETRY_DELAY,
                )
                time.sleep(RETRY_DELAY)
            else:
                return

    def _service_name(self, service: Service) -> str:
        return build_dns_name_string(
            self.domain, SERVICE_SUBDOMAIN, service.namespace, service.name
        )

    def new_service(self, obj: Any) -> None:
        """React to an added service."""
        if isinstance(obj, Service):
            name = self._service_name(obj)
            self.mutate_etcd_or_die(lambda: self.add_dns(name, obj))

    def remove_service(self, obj: Any) -> None:
        """React to a deleted service."""
        if isinstance(obj, Service):
            name = self._service_name(obj)
            self.mutate_etcd_or_die(lambda: self.remove_dns(name))

    def update_service(self, old: Any, new: Any) -> None:
        """Replace the records of an updated service."""
        self.remove_service(old)
        self.new_service(new)