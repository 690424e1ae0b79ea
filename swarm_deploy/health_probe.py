"""Optional HTTPS reachability check run as part of the VERIFIED stage."""

from __future__ import annotations

from urllib.parse import urlsplit

import requests
import urllib3

from swarm_deploy.remote_helpers import CommandResult


def build_probe_urls(*, fqdn: str, port: int, public_path: str) -> list[str]:
    base = f"https://{fqdn}:{port}" if port != 443 else f"https://{fqdn}"
    return [f"{base}/", f"{base}{public_path.rstrip('/')}/"]


def probe_https(*, fqdn: str, port: int, public_path: str, insecure: bool = True, timeout: float = 10) -> CommandResult:
    """GET the static root and the controller prefix through the proxy.

    The proxy certificate is self-signed, so verification is off unless the
    caller has arranged trust for it (insecure=False).
    """
    if insecure:
        urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    lines: list[str] = []
    for url in build_probe_urls(fqdn=fqdn, port=port, public_path=public_path):
        # Report paths only; the host address is a secret.
        label = urlsplit(url).path
        try:
            response = requests.get(url, verify=not insecure, timeout=timeout)
        except requests.RequestException as exc:
            lines.append(f"{label}: {type(exc).__name__}")
            return CommandResult(1, "\n".join(lines[:-1]), lines[-1])

        # Any answer from the proxy, including 404 from the controller, proves TLS termination works.
        if int(response.status_code) >= 500:
            details = str(response.text or "").strip().replace("\n", " ")[:200]
            lines.append(f"{label}: HTTP {response.status_code} {details}")
            return CommandResult(1, "\n".join(lines[:-1]), lines[-1])
        lines.append(f"{label}: HTTP {response.status_code}")

    return CommandResult(0, "\n".join(lines), "")
