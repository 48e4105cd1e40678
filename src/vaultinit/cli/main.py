# Copyright (c) vaultinit Contributors. All rights reserved.
# Licensed under the MIT License.
"""
vaultinit CLI

Commands:
- provision: ensure the KMS key, bucket and service account exist, grant
  access, and write the Vault Secret/ConfigMap manifests
- certs: issue a CA and server certificate locally, without touching the cloud
"""

import json
import logging
import os
import sys
from pathlib import Path
from typing import Optional

import click
from rich import box
from rich.console import Console
from rich.table import Table

from vaultinit import __version__
from vaultinit.authority import CertificateAuthority, SubjectAltNames
from vaultinit.config import CONFIG_FILENAME, DEFAULT_DNS_NAMES, DEFAULT_IP_ADDRESSES, build_config, load_config
from vaultinit.exceptions import VaultInitError
from vaultinit.manifest import MANIFEST_FILE_MODE, write_manifests
from vaultinit.orchestrator import ProvisioningOrchestrator, ProvisioningResult
from vaultinit.providers import create_providers

console = Console()
err_console = Console(stderr=True)
logger = logging.getLogger(__name__)


def _configure_logging(verbose: int) -> None:
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _fail(exc: Exception) -> None:
    err_console.print(f"[red]Error:[/red] {exc}")
    sys.exit(1)


def _print_result(result: ProvisioningResult, output: Path) -> None:
    table = Table(box=box.ROUNDED)
    table.add_column("Kind", style="cyan")
    table.add_column("Name")
    table.add_column("Status")
    for r in result.resources:
        status = "[green]created[/green]" if r.created else "[dim]exists[/dim]"
        table.add_row(r.kind.value, str(r.name), status)
    for g in result.grants:
        status = f"[green]granted {', '.join(g.added)}[/green]" if g.changed else "[dim]unchanged[/dim]"
        table.add_row("policy", str(g.resource), status)
    console.print(table)

    console.print("-" * 74)
    for line in result.summary_lines():
        console.print(line)
    console.print(f"Manifests: {output}")


@click.group()
@click.version_option(__version__, prog_name="vaultinit")
@click.option("--verbose", "-v", count=True, help="Increase log verbosity (-v info, -vv debug).")
def app(verbose: int) -> None:
    """Bootstrap Google Cloud KMS auto-unseal infrastructure for Vault."""
    _configure_logging(verbose)


@app.command()
@click.option(
    "--config", "-c", "config_path",
    type=click.Path(path_type=Path),
    default=None,
    help=f"Config file or directory containing {CONFIG_FILENAME}.",
)
@click.option("--project", "project_id", default=None, help="Google Cloud project id.")
@click.option("--location", default=None, help="KMS location (default: global).")
@click.option("--key-ring", "key_ring_id", default=None, help="KMS key ring id.")
@click.option("--key", "key_id", default=None, help="KMS crypto key id.")
@click.option("--bucket", "bucket_name", default=None, help="GCS bucket name.")
@click.option("--service-account", "service_account_id", default=None, help="Service account id.")
@click.option(
    "--credentials", "credentials_file",
    type=click.Path(path_type=Path),
    default=None,
    help="Service account JSON key (application default credentials if unset).",
)
@click.option(
    "--backend",
    type=click.Choice(["gcp", "memory"]),
    default=None,
    help="Provider backend; 'memory' provisions nothing.",
)
@click.option(
    "--output", "-o", "output_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Manifest output file (default: vault-config.yaml).",
)
@click.option("--json", "json_flag", is_flag=True, help="Print the result as JSON.")
def provision(
    config_path: Optional[Path],
    json_flag: bool,
    **overrides: object,
) -> None:
    """Provision the KMS key, bucket and service account, and write manifests."""
    try:
        if config_path is not None:
            config = load_config(config_path, **overrides)
        else:
            config = build_config({k: v for k, v in overrides.items() if v is not None})
        config.require_credentials()

        orchestrator = ProvisioningOrchestrator(config, create_providers(config))
        result = orchestrator.run()
        output = write_manifests(result.manifests, config.output_path)
    except VaultInitError as exc:
        _fail(exc)
        return

    if json_flag:
        data = result.to_dict()
        data["output_path"] = str(output)
        click.echo(json.dumps(data, indent=2))
        return
    _print_result(result, output)


@app.command()
@click.option(
    "--out-dir", "-d",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("pki"),
    show_default=True,
    help="Directory for ca.crt, server.crt and server.key.",
)
@click.option("--dns", "dns_names", multiple=True, help="DNS SAN (repeatable).")
@click.option("--ip", "ip_addresses", multiple=True, help="IP SAN (repeatable).")
@click.option("--common-name", default="server", show_default=True, help="Server certificate CN.")
def certs(out_dir: Path, dns_names: tuple, ip_addresses: tuple, common_name: str) -> None:
    """Issue a CA and a server certificate without touching the cloud."""
    if not dns_names and not ip_addresses:
        dns_names, ip_addresses = tuple(DEFAULT_DNS_NAMES), tuple(DEFAULT_IP_ADDRESSES)
    try:
        names = SubjectAltNames.from_strings(dns_names, ip_addresses)
    except ValueError as exc:
        _fail(exc)
        return

    try:
        authority = CertificateAuthority.new()
        server = authority.issue_server_certificate(names, common_name=common_name)
    except VaultInitError as exc:
        _fail(exc)
        return

    files = {
        "ca.crt": (authority.ca_cert_pem, 0o644),
        "server.crt": (server.cert_pem, 0o644),
        "server.key": (server.key_pem, MANIFEST_FILE_MODE),
    }
    try:
        out_dir.mkdir(parents=True, exist_ok=True)
        for filename, (data, mode) in files.items():
            path = out_dir / filename
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.chmod(path, mode)
            console.print(f"[green]✓[/green] Wrote {path}")
    except OSError as exc:
        _fail(exc)


if __name__ == "__main__":
    app()
