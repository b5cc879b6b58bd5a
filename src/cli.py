#!/usr/bin/env python3
"""
CLI tool for Pomerium Zero
Provides a plan/apply interface for cluster settings, routes and policies
"""

import asyncio
import json
import sys

import click
import yaml
from tabulate import tabulate

from config import get_config
from errors import ConfigValidationError, ManifestError, ProviderError, StateError
from main import Application, setup_logging
from plugins.base import UNKNOWN, ChangeAction, Plan

SYMBOLS = {
    ChangeAction.CREATE: "+",
    ChangeAction.UPDATE: "~",
    ChangeAction.DELETE: "-",
}
HANDLED_ERRORS = (ProviderError, ConfigValidationError, ManifestError, StateError)


class PzctlCLI:
    """Runs controller operations and reports errors."""

    def __init__(self, app: Application):
        self.app = app

    def run(self, coro):
        """Run a coroutine, exiting with status 1 on a known error"""
        try:
            return asyncio.run(coro)
        except HANDLED_ERRORS as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

    def call(self, fn, *args):
        try:
            return fn(*args)
        except HANDLED_ERRORS as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

    @property
    def controller(self):
        self.call(self.app.initialize)
        return self.app.controller

    def load(self, filename):
        return self.call(self.controller.load_manifest, filename)


def _format_value(value, sensitive=False):
    if value is UNKNOWN:
        return repr(UNKNOWN)
    if sensitive and value is not None:
        return "(sensitive)"
    return json.dumps(value, default=repr)


def _mask(attributes, sensitive):
    return {
        k: "(sensitive)" if k in sensitive and v is not None else v
        for k, v in attributes.items()
    }


def render_plan(plan: Plan, controller) -> str:
    """Render a plan as human readable text"""
    lines = []
    for change in plan.changes:
        if change.action == ChangeAction.NO_OP:
            continue

        sensitive = controller.sensitive(change.resource_type)
        lines.append(f"  {SYMBOLS[change.action]} {change.address}")

        if change.action == ChangeAction.DELETE:
            continue
        for attribute, (before, after) in sorted(change.changes.items()):
            hidden = attribute in sensitive
            if change.action == ChangeAction.CREATE:
                lines.append(f"      {attribute}: {_format_value(after, hidden)}")
            else:
                lines.append(
                    f"      {attribute}: {_format_value(before, hidden)} -> "
                    f"{_format_value(after, hidden)}"
                )

    summary = plan.summary()
    lines.append("")
    lines.append(
        f"Plan: {summary['create']} to add, {summary['update']} to change, "
        f"{summary['delete']} to destroy."
    )
    return "\n".join(lines)


def _report(result):
    if not result.success:
        click.echo(f"Error: {result.failed_address}: {result.error_message}", err=True)
        sys.exit(1)
    click.echo(
        f"Apply complete! Resources: {result.resources_created} added, "
        f"{result.resources_updated} changed, {result.resources_deleted} destroyed."
    )


def _echo_events(app: Application):
    app.event_bus.add_listener(
        lambda event: click.echo(
            f"{event.address}: {event.event_type.value.lower()} [id={event.resource_id}]"
        )
    )


async def _logged(app: Application, operation, events_file):
    """Await operation, appending its events to events_file as JSON lines."""
    if not events_file:
        return await operation

    subscriber_id, subscription = await app.event_bus.subscribe()
    try:
        return await operation
    finally:
        await app.event_bus.unsubscribe(subscriber_id)
        with open(events_file, "a") as f:
            for event in subscription.drain():
                f.write(event.to_json() + "\n")


@click.group()
@click.option("--state", "state_path", envvar="PZ_STATE_FILE", help="State file path")
@click.option("--api-url", envvar="PZ_API_URL", help="Pomerium Zero API URL")
@click.option("--log-level", envvar="LOG_LEVEL", help="Log level")
@click.pass_context
def cli(ctx, state_path, api_url, log_level):
    """pzctl - manage Pomerium Zero cluster settings, routes and policies"""
    if ctx.obj is not None:
        return

    config = get_config()
    if state_path:
        config.state.path = state_path
    if api_url:
        config.provider.api_url = api_url.rstrip("/")
    if log_level:
        config.logging.level = log_level.upper()

    setup_logging(config.logging.level)
    ctx.obj = PzctlCLI(Application(config))


@cli.command()
@click.argument("filename", type=click.Path(exists=True))
@click.pass_obj
def validate(client, filename):
    """Validate a manifest without calling the API"""
    controller = client.controller
    manifest = client.load(filename)
    errors = client.call(controller.validate, manifest)

    if errors:
        for error in errors:
            click.echo(f"Error: {error}", err=True)
        sys.exit(1)
    click.echo("The manifest is valid.")


@cli.command()
@click.argument("filename", type=click.Path(exists=True))
@click.pass_obj
def plan(client, filename):
    """Show the changes apply would make"""
    controller = client.controller
    manifest = client.load(filename)

    async def _plan():
        await client.app.connect()
        return await controller.plan(manifest)

    result = client.run(_plan())
    if not result.has_changes:
        click.echo("No changes. Infrastructure is up-to-date.")
        return
    click.echo(render_plan(result, controller))


@cli.command()
@click.argument("filename", type=click.Path(exists=True))
@click.option("--auto-approve", is_flag=True, help="Skip interactive approval")
@click.option("--events-file", type=click.Path(), help="Append change events as JSON lines")
@click.pass_obj
def apply(client, filename, auto_approve, events_file):
    """Create, update and delete resources to match a manifest"""
    controller = client.controller
    manifest = client.load(filename)

    client.run(client.app.connect())
    result = client.run(controller.plan(manifest))

    if not result.has_changes:
        click.echo("No changes. Infrastructure is up-to-date.")
        return

    click.echo(render_plan(result, controller))
    if not auto_approve:
        click.confirm("Do you want to perform these actions?", abort=True)

    _echo_events(client.app)
    operation = controller.apply(manifest, result)
    _report(client.run(_logged(client.app, operation, events_file)))


@cli.command()
@click.argument("filename", type=click.Path(exists=True))
@click.option("--auto-approve", is_flag=True, help="Skip interactive approval")
@click.option("--events-file", type=click.Path(), help="Append change events as JSON lines")
@click.pass_obj
def destroy(client, filename, auto_approve, events_file):
    """Delete every managed resource"""
    controller = client.controller
    client.load(filename)

    result = controller.plan_destroy()
    if not result.has_changes:
        click.echo("No resources to destroy.")
        return

    click.echo(render_plan(result, controller))
    if not auto_approve:
        click.confirm("Do you really want to destroy all resources?", abort=True)

    client.run(client.app.connect())
    _echo_events(client.app)
    _report(client.run(_logged(client.app, controller.destroy(), events_file)))


@cli.command()
@click.pass_obj
def refresh(client):
    """Update state from the API"""
    controller = client.controller

    async def _refresh():
        await client.app.connect()
        return await controller.refresh()

    dropped = client.run(_refresh())
    for address in dropped:
        click.echo(f"{address}: no longer exists, removed from state")
    click.echo(f"Refreshed {len(controller.state.resources)} resources.")


@cli.command(name="import")
@click.argument("address")
@click.argument("resource_id")
@click.pass_obj
def import_(client, address, resource_id):
    """Bring an existing resource under management"""
    controller = client.controller

    async def _import():
        await client.app.connect()
        return await controller.import_resource(address, resource_id)

    resource = client.run(_import())
    click.echo(f"Imported {resource.address} [id={resource.id}]")


@cli.group()
def state():
    """Inspect and modify the state file"""
    pass


@state.command(name="list")
@click.pass_obj
def state_list(client):
    """List managed resources"""
    controller = client.controller
    rows = [
        [address, resource.type, resource.id]
        for address, resource in sorted(controller.state.resources.items())
    ]
    if not rows:
        click.echo("No resources in state.")
        return
    click.echo(tabulate(rows, headers=["Address", "Type", "ID"], tablefmt="grid"))


@state.command(name="show")
@click.argument("address")
@click.option("--output", "-o", type=click.Choice(["json", "yaml"]), default="json")
@click.pass_obj
def state_show(client, address, output):
    """Show the recorded attributes of a resource"""
    controller = client.controller
    resource = controller.state.get(address)
    if resource is None:
        click.echo(f"Error: No resource in state at {address}", err=True)
        sys.exit(1)

    data = resource.to_dict()
    data["attributes"] = _mask(data["attributes"], controller.sensitive(resource.type))

    if output == "yaml":
        click.echo(yaml.dump(data, default_flow_style=False))
    else:
        click.echo(json.dumps(data, indent=2))


@state.command(name="rm")
@click.argument("address")
@click.pass_obj
def state_rm(client, address):
    """Forget a resource without deleting it"""
    controller = client.controller
    client.call(controller.remove, address)
    click.echo(f"Removed {address}")


@cli.command()
@click.pass_obj
def types(client):
    """List the supported resource and data source types"""
    client.call(client.app.initialize)
    registry = client.app.registry

    rows = [
        ["resource", name, registry.get_resource_plugin(name).description]
        for name in sorted(registry.list_resource_plugins())
    ]
    rows += [
        ["data", name, registry.get_data_source_plugin(name).description]
        for name in sorted(registry.list_data_source_plugins())
    ]
    click.echo(tabulate(rows, headers=["Kind", "Type", "Description"], tablefmt="grid"))


@cli.group()
def lookup():
    """Look up existing objects"""
    pass


def _lookup(client, data_source, config):
    async def _read():
        await client.app.connect()
        plugin = client.app.registry.get_data_source_plugin(data_source)
        return await plugin.read(config)

    result = client.run(_read())
    rows = [[key, value] for key, value in result.items()]
    click.echo(tabulate(rows, headers=["Attribute", "Value"], tablefmt="grid"))


@lookup.command(name="cluster")
@click.argument("name")
@click.pass_obj
def lookup_cluster(client, name):
    """Look up a cluster by name"""
    client.call(client.app.initialize)
    _lookup(client, "pomeriumzero_cluster", {"name": name})


@lookup.command(name="policy")
@click.argument("name")
@click.argument("namespace_id")
@click.pass_obj
def lookup_policy(client, name, namespace_id):
    """Look up a policy by name within a namespace"""
    client.call(client.app.initialize)
    _lookup(
        client, "pomeriumzero_policy", {"name": name, "namespace_id": namespace_id}
    )


@cli.command()
@click.option("--namespace", "namespace_id", help="Only list this namespace")
@click.pass_obj
def policies(client, namespace_id):
    """List policies"""
    client.call(client.app.initialize)

    async def _list():
        await client.app.connect()
        plugin = client.app.registry.get_resource_plugin("pomeriumzero_policy")
        return await plugin.list_policies(namespace_id)

    result = client.run(_list())
    rows = [
        [p["id"], p["name"], "✓" if p["enforced"] else "✗"] for p in result
    ]
    click.echo(tabulate(rows, headers=["ID", "Name", "Enforced"], tablefmt="grid"))


def main():
    cli()


if __name__ == "__main__":
    main()
