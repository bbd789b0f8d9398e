#!/usr/bin/env python3
"""
CLI tool for the Ingress Operator
Provides kubectl-like interface for managing Ingresses
"""

import json
import time

import click
import requests
import yaml
from tabulate import tabulate

API_BASE_URL = "http://localhost:8000/api/v1"


class IngressOperatorCLI:
    """CLI client for the Ingress Operator"""

    def __init__(self, base_url: str = API_BASE_URL):
        self.base_url = base_url

    def _make_request(self, method: str, endpoint: str, quiet_status=(), **kwargs):
        """Make HTTP request to the API"""
        url = f"{self.base_url}{endpoint}"
        try:
            response = requests.request(method, url, **kwargs)
            if response.status_code in quiet_status:
                return None
            response.raise_for_status()
            if not response.content:
                return {}
            return response.json()
        except requests.exceptions.RequestException as e:
            click.echo(f"Error: {e}", err=True)
            if hasattr(e, "response") and e.response is not None:
                try:
                    error_detail = e.response.json()
                    click.echo(f"Detail: {error_detail}", err=True)
                except (ValueError, json.JSONDecodeError):
                    click.echo(f"Response: {e.response.text}", err=True)
            return None

    def ingress_path(self, namespace: str, name: str = "") -> str:
        path = f"/namespaces/{namespace}/ingresses"
        if name:
            path += f"/{name}"
        return path


def load_manifest(filename: str) -> dict:
    """Read an Ingress manifest from a YAML or JSON file."""
    with open(filename, "r") as f:
        if filename.endswith(".yaml") or filename.endswith(".yml"):
            data = yaml.safe_load(f)
        else:
            data = json.load(f)

    # Accept both the flat API shape and a Kubernetes-style manifest
    metadata = data.get("metadata") or {}
    return {
        "name": data.get("name") or metadata.get("name"),
        "namespace": data.get("namespace") or metadata.get("namespace") or "default",
        "labels": data.get("labels") or metadata.get("labels") or {},
        "annotations": data.get("annotations") or metadata.get("annotations") or {},
        "spec": data.get("spec") or {},
    }


def ready_mark(ingress: dict) -> str:
    return "True" if ingress.get("ready") else "False"


@click.group()
@click.option("--api-url", envvar="INGRESS_API_URL", default=API_BASE_URL)
@click.pass_context
def cli(ctx, api_url):
    """Ingress Operator CLI - kubectl-like interface for Ingresses"""
    ctx.obj = IngressOperatorCLI(api_url)


@cli.command()
@click.argument("filename", type=click.Path(exists=True))
@click.pass_obj
def apply(client, filename):
    """Create or update an Ingress from a YAML/JSON file"""
    manifest = load_manifest(filename)
    namespace = manifest.pop("namespace")
    if not manifest["name"]:
        raise click.UsageError("Manifest has no name")

    result = client._make_request(
        "POST",
        client.ingress_path(namespace),
        quiet_status=(409,),
        json=manifest,
    )
    if result:
        click.echo(f"ingress/{result['name']} created")
        return

    name = manifest.pop("name")
    result = client._make_request(
        "PUT", client.ingress_path(namespace, name), json=manifest
    )
    if result:
        click.echo(f"ingress/{result['name']} configured")
        click.echo(f"Generation: {result['generation']}")


@cli.command()
@click.option("--namespace", "-n", default=None, help="Namespace (default: all)")
@click.option(
    "--output", "-o", type=click.Choice(["table", "json", "wide"]), default="table"
)
@click.pass_obj
def get(client, namespace, output):
    """List Ingresses"""
    if namespace:
        result = client._make_request("GET", client.ingress_path(namespace))
    else:
        result = client._make_request("GET", "/ingresses")

    if result is None:
        return

    if output == "json":
        click.echo(json.dumps(result, indent=2))
        return

    headers = ["Namespace", "Name", "Ready", "Generation", "Observed"]
    if output == "wide":
        headers += ["Hosts", "Load Balancer"]

    rows = []
    for ingress in result:
        status = ingress.get("status") or {}
        row = [
            ingress["namespace"],
            ingress["name"],
            ready_mark(ingress),
            ingress["generation"],
            status.get("observed_generation", 0),
        ]
        if output == "wide":
            hosts = [
                host
                for rule in (ingress.get("spec") or {}).get("rules") or []
                for host in rule.get("hosts") or []
            ]
            domains = [
                lb.get("domain_internal") or lb.get("domain") or lb.get("ip", "")
                for lb in status.get("load_balancer") or []
            ]
            row += [",".join(hosts), ",".join(domains)]
        rows.append(row)

    click.echo(tabulate(rows, headers=headers, tablefmt="grid"))


@cli.command()
@click.argument("name")
@click.option("--namespace", "-n", default="default")
@click.option("--output", "-o", type=click.Choice(["json", "yaml"]), default="yaml")
@click.pass_obj
def describe(client, name, namespace, output):
    """Describe an Ingress"""
    result = client._make_request("GET", client.ingress_path(namespace, name))

    if result:
        if output == "yaml":
            click.echo(yaml.dump(result, default_flow_style=False))
        else:
            click.echo(json.dumps(result, indent=2))


@cli.command()
@click.argument("name")
@click.option("--namespace", "-n", default="default")
@click.pass_obj
def routes(client, name, namespace):
    """List the Routes owned by an Ingress"""
    result = client._make_request(
        "GET", client.ingress_path(namespace, name) + "/routes"
    )

    if result is None:
        return

    headers = ["Name", "Host", "Service", "Port", "TLS"]
    rows = []
    for route in result:
        spec = route.get("spec") or {}
        to = spec.get("to") or {}
        rows.append(
            [
                route["name"],
                spec.get("host", ""),
                f"{to.get('name', '')}.{to.get('namespace', '')}",
                (spec.get("port") or {}).get("target_port", ""),
                "✓" if spec.get("tls") else "",
            ]
        )

    click.echo(tabulate(rows, headers=headers, tablefmt="grid"))


@cli.command()
@click.argument("name")
@click.option("--namespace", "-n", default="default")
@click.confirmation_option(prompt="Are you sure you want to delete this ingress?")
@click.pass_obj
def delete(client, name, namespace):
    """Delete an Ingress and its Routes"""
    result = client._make_request("DELETE", client.ingress_path(namespace, name))

    if result is not None:
        click.echo(f"ingress/{name} deleted")


@cli.command()
@click.argument("name")
@click.option("--namespace", "-n", default="default")
@click.pass_obj
def reconcile(client, name, namespace):
    """Manually trigger reconciliation for an Ingress"""
    result = client._make_request(
        "POST", client.ingress_path(namespace, name) + "/reconcile"
    )

    if result:
        click.echo("Reconciliation triggered successfully")


@cli.command()
@click.argument("name")
@click.option("--namespace", "-n", default="default")
@click.option("--follow", "-f", is_flag=True, help="Follow status updates")
@click.option("--interval", "-i", default=5, help="Polling interval in seconds")
@click.pass_obj
def status(client, name, namespace, follow, interval):
    """Show status of an Ingress"""

    def show_status():
        result = client._make_request(
            "GET", client.ingress_path(namespace, name) + "/status"
        )
        if not result:
            return

        click.clear()
        ingress_status = result.get("status") or {}
        observed = ingress_status.get("observed_generation", 0)
        click.echo(f"Ingress: {namespace}/{name}")
        click.echo(f"Ready: {result['ready']}")
        click.echo(f"Generation: {result['generation']}")
        click.echo(f"Observed Generation: {observed}")

        conditions = ingress_status.get("conditions") or []
        if conditions:
            rows = [
                [c["type"], c["status"], c.get("reason", ""), c.get("message", "")]
                for c in conditions
            ]
            click.echo()
            click.echo(
                tabulate(
                    rows, headers=["Type", "Status", "Reason", "Message"], tablefmt="grid"
                )
            )

        if result["generation"] != observed:
            click.echo("\n⚠️  Ingress is out of sync (reconciliation pending)")
        elif result["ready"]:
            click.echo("\n✓ Ingress is ready")

    show_status()

    if follow:
        try:
            while True:
                time.sleep(interval)
                show_status()
        except KeyboardInterrupt:
            click.echo("\nStopped following")


if __name__ == "__main__":
    cli()
