# minikit

Building blocks for running a single-node local Kubernetes cluster:

- `minikit.dockerenv`: shell snippets that point a Docker client at the
  cluster VM (bash and other POSIX shells, fish, PowerShell, cmd and Emacs)
- `minikit.servers`: start and stop handling for a group of named
  server components
- `minikit.service`: readiness checks for service endpoints
- `minikit.localkube`: cluster options, file layout and checks of the
  API server certificates
- `minikit.kube2sky`: SkyDNS records for services, endpoints and pods

## Installation

```
pip install minikit
```

Python 3.10 or later is required. The package depends on `cryptography`
and `psutil`.

## docker-env output

```python
from minikit.dockerenv import shell_config_set, shell_config_unset

env = {
    "DOCKER_HOST": "tcp://192.168.99.100:2376",
    "DOCKER_TLS_VERIFY": "1",
    "DOCKER_CERT_PATH": "/home/user/.minikube/certs",
}
cfg = shell_config_set(env, "bash", "1.23", None, {})
print(cfg.render())
# export DOCKER_TLS_VERIFY="1"
# export DOCKER_HOST="tcp://192.168.99.100:2376"
# ...

print(shell_config_unset("fish").render())
```

Passing an IP as `no_proxy_ip` adds it to `no_proxy` (or `NO_PROXY` when
the lower case variable is unset), once only. `get_shell` returns a forced
shell name or detects the user's shell from `SHELL` (on Windows, from the
parent processes). `generate_usage_hint` returns the comment that tells
the user how to apply the output.

## Server components

`Servers` holds components in order. `start_all` starts them from first
to last and `stop_all` stops them from last to first; `start` and `stop`
act on one component by name and raise `ServerNotFoundError` when none
has that name.

`SimpleServer(name, interval, routine, output=None)` runs `routine` in a
background thread again and again, `interval` seconds apart, reporting
each exit on `output` (standard output by default), until it is stopped.
Stopping does not interrupt a routine that is running; stopping twice
raises `RuntimeError`.

## Service endpoints

```python
from minikit.service import EndpointAddress, EndpointSubset, Endpoints, check_endpoint_ready

check_endpoint_ready(Endpoints(subsets=[EndpointSubset(addresses=[EndpointAddress("1.1.1.1")])]))
check_endpoint_ready(Endpoints())  # raises EndpointNotReadyError
```

An endpoint is ready when it has subsets and none of them has not-ready
addresses. `to_https` turns the first `http` of a URL into `https`.

## Cluster options and certificates

`LocalkubeServer` holds the options of a local cluster and its `Servers`.
It gives the data and certificate paths below `localkube_directory`, the
secure and insecure API server URLs, and checks whether certificates must
be made again: `should_generate_ca_certs()` and
`should_generate_certs(ips)` return True when a file is unreadable, the
certificate cannot be parsed, or (for the API server certificate) one of
`ips` is missing from its subject alternative names. `get_all_ips()`
returns the service network address followed by every interface address.

## DNS records

```python
from minikit.kube2sky import Kube2Sky, MemoryEtcd, Service, ServicePort

etcd = MemoryEtcd()
bridge = Kube2Sky(etcd, domain="cluster.local")
bridge.new_service(
    Service("web", "default", "10.0.0.10", [ServicePort("http", 80, "TCP")])
)
print(sorted(etcd.records))  # A and SRV records under /skydns/local/cluster/svc/default/web
```

`Kube2Sky` writes A and SRV records for services with a cluster IP, for
headless services from their endpoints, and for pods once they have an
IP; it removes them again on deletion. Writes are retried until
`etcd_mutation_timeout` seconds have passed, then `EtcdMutationTimeout`
is raised. `MemoryEtcd` and `MemoryStore` are in-memory stand-ins for the
key store and object caches.

## What the package does not do

- It has no command line; everything is used from Python.
- It does not read or write a settings file and does not validate
  settings values.
- It does not generate certificates; it only decides whether they need
  to be made again.
- It does not run cluster components, talk to a real etcd or API server,
  or watch the cluster for changes; records are written only when the
  `Kube2Sky` handlers are called.

## Running the tests

```
pip install "minikit[test]"
pytest
```