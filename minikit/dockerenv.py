"""Shell snippets that point a docker client at the cluster's daemon."""

from __future__ import annotations

import ntpath
import os
import posixpath
import sys
from collections.abc import Mapping
from dataclasses import dataclass

import psutil

COMMAND_LINE = "minikube docker-env"


@dataclass
class ShellConfig:
    """Everything needed to render the docker environment for one shell."""

    prefix: str = ""
    delimiter: str = ""
    suffix: str = ""
    docker_cert_path: str = ""
    docker_host: str = ""
    docker_tls_verify: str = ""
    docker_api_version: str = ""
    usage_hint: str = ""
    no_proxy_var: str = ""
    no_proxy_value: str = ""

    def _line(self, key: str, value: str) -> str:
        return f"{self.prefix}{key}{self.delimiter}{value}{self.suffix}"

    def render(self) -> str:
        """Return the shell text that sets or unsets the variables."""
        parts = [
            self._line("DOCKER_TLS_VERIFY", self.docker_tls_verify),
            self._line("DOCKER_HOST", self.docker_host),
            self._line("DOCKER_CERT_PATH", self.docker_cert_path),
            self._line("DOCKER_API_VERSION", self.docker_api_version),
        ]
        if self.no_proxy_var:
            parts.append(self._line(self.no_proxy_var, self.no_proxy_value))
        parts.append(self.usage_hint)
        return "".join(parts)


def generate_usage_hint(user_shell: str) -> str:
    """Return the comment telling the user how to apply the output."""
    comment = "#"
    if user_shell == "fish":
        cmd = f"eval ({COMMAND_LINE})"
    elif user_shell == "powershell":
        cmd = f"& {COMMAND_LINE} | Invoke-Expression"
    elif user_shell == "cmd":
        cmd = f"\t@FOR /f \"tokens=*\" %i IN ('{COMMAND_LINE}') DO @%i"
        comment = "REM"
    elif user_shell == "emacs":
        cmd = f'(with-temp-buffer (shell-command "{COMMAND_LINE}" (current-buffer)) (eval-buffer))'
        comment = ";;"
    else:
        cmd = f"eval $({COMMAND_LINE})"
    return f"{comment} Run this command to configure your shell: \n{comment} {cmd}\n"


def find_no_proxy_from_env(environ: Mapping[str, str] | None = None) -> tuple[str, str]:
    """Return the name and value of the no-proxy variable in use.

    The lower case ``no_proxy`` wins when set; otherwise ``NO_PROXY`` is used.
    """
    env = os.environ if environ is None else environ
    value = env.get("no_proxy", "")
    if value:
        return "no_proxy", value
    return "NO_PROXY", env.get("NO_PROXY", "")


def _detect_windows_shell() -> str:
    try:
        for parent in psutil.Process().parents():
            name = ntpath.splitext(parent.name())[0].lower()
            if name in ("powershell", "pwsh"):
                return "powershell"
            if name == "cmd":
                return "cmd"
    except psutil.Error:
        pass
    return "cmd"


def get_shell(forced: str | None = None, environ: Mapping[str, str] | None = None) -> str:
    """Return the forced shell, or detect the user's shell."""
    if forced:
        return forced
    env = os.environ if environ is None else environ
    shell = env.get("SHELL", "")
    if shell:
        return posixpath.basename(shell.replace("\\", "/"))
    if sys.platform == "win32":
        return _detect_windows_shell()
    if env.get("__fish_bin_dir"):
        return "fish"
    raise LookupError("unknown shell")


def add_to_no_proxy(value: str, ip: str) -> str:
    """Add ``ip`` to a comma separated no-proxy list, idempotently."""
    if not value:
        return ip
    if ip in value:
        return value
    return f"{value},{ip}"


_SET_SYNTAX = {
    "fish": ("set -gx ", '";\n', ' "'),
    "powershell": ("$Env:", '"\n', ' = "'),
    "cmd": ("SET ", "\n", "="),
    "emacs": ('(setenv "', '")\n', '" "'),
}
_SET_DEFAULT = ("export ", '"\n', '="')

_UNSET_SYNTAX = {
    "fish": ("set -e ", ";\n", ""),
    "powershell": (r"Remove-Item Env:\\", "\n", ""),
    "cmd": ("SET ", "\n", "="),
    "emacs": ('(setenv "', ")\n", '" nil'),
}
_UNSET_DEFAULT = ("unset ", "\n", "")


def shell_config_set(
    env_map: Mapping[str, str],
    user_shell: str,
    docker_api_version: str,
    no_proxy_ip: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> ShellConfig:
    """Build the configuration that sets the docker variables.

    When ``no_proxy_ip`` is given it is added to the no-proxy variable.
    """
    prefix, suffix, delimiter = _SET_SYNTAX.get(user_shell, _SET_DEFAULT)
    config = ShellConfig(
        prefix=prefix,
        delimiter=delimiter,
        suffix=suffix,
        docker_cert_path=env_map.get("DOCKER_CERT_PATH", ""),
        docker_host=env_map.get("DOCKER_HOST", ""),
        docker_tls_verify=env_map.get("DOCKER_TLS_VERIFY", ""),
        docker_api_version=docker_api_version,
        usage_hint=generate_usage_hint(user_shell),
    )
    if no_proxy_ip is not None:
        var, value = find_no_proxy_from_env(environ)
        config.no_proxy_var = var
        config.no_proxy_value = add_to_no_proxy(value, no_proxy_ip)
    return config


def shell_config_unset(
    user_shell: str,
    no_proxy: bool = False,
    environ: Mapping[str, str] | None = None,
) -> ShellConfig:
    """Build the configuration that unsets the docker variables."""
    prefix, suffix, delimiter = _UNSET_SYNTAX.get(user_shell, _UNSET_DEFAULT)
    config = ShellConfig(
        prefix=prefix,
        delimiter=delimiter,
        suffix=suffix,
        usage_hint=generate_usage_hint(user_shell),
    )
    if no_proxy:
        config.no_proxy_var, config.no_proxy_value = find_no_proxy_from_env(environ)
    return config