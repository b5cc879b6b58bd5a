"""
Controller - Plans and applies manifests against Pomerium Zero.

Compares the desired state declared in a manifest with the recorded
state (refreshed from the API) and drives the resource handlers to
converge them. Operations run one at a time, in dependency order.
"""

import logging
from typing import Any, Dict, List, Optional

from errors import ConfigValidationError, ManifestError, ProviderError, StateError
from events import EventBus, EventType, ResourceEvent
from manifest import (
    Manifest,
    dependency_order,
    find_attribute_references,
    has_references,
    load_manifest,
    resolve_references,
)
from plugins.base import (
    UNKNOWN,
    ApplyResult,
    ChangeAction,
    Plan,
    ResourceChange,
    is_unknown,
)
from plugins.registry import PluginRegistry, get_registry
from state import ResourceState, StateStore
from validation import (
    apply_defaults,
    sensitive_attributes,
    validate_config_against_schema,
)

logger = logging.getLogger(__name__)


class Controller:
    """
    Reconciles a manifest with the state store.

    The registry's plugins must already be configured with a provider
    session for any operation that talks to the API.
    """

    def __init__(
        self,
        state: StateStore,
        registry: Optional[PluginRegistry] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.state = state
        self.registry = registry or get_registry()
        self._event_bus = event_bus

    # Manifest handling

    def load_manifest(self, path: str) -> Manifest:
        """Load a manifest file and check that every type is known."""
        manifest = load_manifest(path)
        self.check_types(manifest)
        return manifest

    def check_types(self, manifest: Manifest) -> None:
        for spec in manifest.data:
            if not self.registry.has_data_source_plugin(spec.type):
                raise ManifestError(f"{spec.address}: unknown data source type {spec.type}")
        for spec in manifest.resources:
            if not self.registry.has_resource_plugin(spec.type):
                raise ManifestError(f"{spec.address}: unknown resource type {spec.type}")

    def _check_attribute(self, address: str, attribute: str) -> None:
        """Fail unless a resource type can ever have ``attribute``."""
        plugin = self.registry.get_resource_plugin(address.split(".")[0])
        if attribute != "id" and attribute not in plugin.schema.get("properties", {}):
            raise ManifestError(f"{address} has no attribute {attribute}")

    def _state_plugin(self, resource: ResourceState) -> Any:
        if not self.registry.has_resource_plugin(resource.type):
            raise StateError(
                f"{resource.address}: resource type {resource.type} is not registered"
            )
        return self.registry.get_resource_plugin(resource.type)

    def _check_config(
        self, address: str, plugin: Any, config: Dict[str, Any]
    ) -> Optional[ConfigValidationError]:
        """
        Schema and hook validation.

        Keys with unknown values are skipped by the schema check. Hooks see
        them as UNKNOWN and treat them as set.
        """
        unknown_keys = [k for k, v in config.items() if is_unknown(v)]
        valid, error = validate_config_against_schema(
            config, plugin.schema, unknown_keys=unknown_keys
        )
        if not valid:
            return ConfigValidationError(address, error)

        valid, error = plugin.validate_config(config)
        if not valid:
            return ConfigValidationError(address, error)
        return None

    def validate(self, manifest: Manifest) -> List[ConfigValidationError]:
        """
        Validate every entry of a manifest without calling the API.

        Attributes that hold references are treated as unknown.

        Returns:
            The validation errors, empty if the manifest is valid.
        """
        self.check_types(manifest)
        errors: List[ConfigValidationError] = []

        for spec in manifest.data:
            plugin = self.registry.get_data_source_plugin(spec.type)
            config = {
                k: UNKNOWN if has_references(v) else v for k, v in spec.config.items()
            }
            error = self._check_config(spec.address, plugin, config)
            if error:
                errors.append(error)

        for spec in manifest.resources:
            plugin = self.registry.get_resource_plugin(spec.type)
            config = {
                k: UNKNOWN if has_references(v) else v for k, v in spec.config.items()
            }
            for address, attribute in sorted(find_attribute_references(spec.config)):
                if address.startswith("data."):
                    continue
                try:
                    self._check_attribute(address, attribute)
                except ManifestError as e:
                    errors.append(ConfigValidationError(spec.address, str(e)))
            config = plugin.normalize_config(apply_defaults(config, plugin.schema))
            error = self._check_config(spec.address, plugin, config)
            if error:
                errors.append(error)

        return errors

    # Reference lookups

    def _lookup(
        self,
        data: Dict[str, Dict[str, Any]],
        planned: Optional[Dict[str, Dict[str, Any]]] = None,
    ):
        def lookup(address: str, attribute: str) -> Any:
            if address.startswith("data."):
                values = data.get(address)
                if values is None:
                    raise ManifestError(f"Data source {address} has not been read")
            elif planned is not None and address in planned:
                values = planned[address]
                if attribute not in values:
                    self._check_attribute(address, attribute)
                    return UNKNOWN
                return values[attribute]
            else:
                resource = self.state.get(address)
                if resource is None:
                    raise ManifestError(f"Resource {address} is not in state")
                values = resource.attributes

            if attribute not in values:
                raise ManifestError(f"{address} has no attribute {attribute}")
            return values[attribute]

        return lookup

    def _desired_config(
        self, spec: Any, plugin: Any, lookup: Any
    ) -> Dict[str, Any]:
        config = apply_defaults(spec.config, plugin.schema)
        config = resolve_references(config, lookup)
        config = plugin.normalize_config(config)
        error = self._check_config(spec.address, plugin, config)
        if error:
            raise error
        return config

    async def read_data_sources(self, manifest: Manifest) -> Dict[str, Dict[str, Any]]:
        """Read every data source, in dependency order."""
        data: Dict[str, Dict[str, Any]] = {}
        lookup = self._lookup(data)

        for spec in manifest.data:
            plugin = self.registry.get_data_source_plugin(spec.type)
            config = resolve_references(spec.config, lookup)
            error = self._check_config(spec.address, plugin, config)
            if error:
                raise error

            logger.info(f"Reading {spec.address}")
            data[spec.address] = await plugin.read(config)

        return data

    # Operations

    async def refresh(self, save: bool = True) -> List[str]:
        """
        Refresh every resource in state from the API.

        Resources that no longer exist are dropped from state.

        Returns:
            The addresses that were dropped.
        """
        dropped: List[str] = []

        for address in self.state.addresses():
            resource = self.state.get(address)
            plugin = self._state_plugin(resource)

            logger.info(f"Refreshing {address} [id={resource.id}]")
            current = await plugin.read(dict(resource.attributes, id=resource.id))

            if current is None:
                logger.warning(f"{address} no longer exists, removing from state")
                self.state.remove(address)
                dropped.append(address)
            else:
                resource.attributes = current
                resource.id = current.get("id", resource.id)

        if save:
            self.state.save()
        return dropped

    async def plan(self, manifest: Manifest, refresh: bool = True) -> Plan:
        """
        Compute the changes needed to converge state with the manifest.

        Args:
            manifest: The desired state
            refresh: Refresh state from the API first

        Raises:
            ConfigValidationError: If a resolved configuration is invalid.
            ProviderError: If a lookup or refresh fails.
        """
        self.check_types(manifest)
        data = await self.read_data_sources(manifest)

        if refresh:
            await self.refresh(save=False)

        plan = Plan(data=data)
        planned: Dict[str, Dict[str, Any]] = {}
        lookup = self._lookup(data, planned)

        for spec in manifest.resources:
            plugin = self.registry.get_resource_plugin(spec.type)
            config = self._desired_config(spec, plugin, lookup)
            current = self.state.get(spec.address)

            if current is None:
                planned[spec.address] = {"id": UNKNOWN, **config}
                plan.changes.append(
                    ResourceChange(
                        address=spec.address,
                        resource_type=spec.type,
                        name=spec.name,
                        action=ChangeAction.CREATE,
                        after=config,
                        changes={k: (None, v) for k, v in config.items()},
                        dependencies=spec.dependencies,
                    )
                )
                continue

            before = current.attributes
            changes = {}
            for attribute, desired in config.items():
                existing = before.get(attribute)
                if is_unknown(desired) or not plugin.attribute_equal(
                    attribute, desired, existing
                ):
                    changes[attribute] = (existing, desired)

            action = ChangeAction.UPDATE if changes else ChangeAction.NO_OP
            planned[spec.address] = dict(before, **config) if changes else dict(before)
            plan.changes.append(
                ResourceChange(
                    address=spec.address,
                    resource_type=spec.type,
                    name=spec.name,
                    action=action,
                    before=before,
                    after=config,
                    changes=changes,
                    dependencies=spec.dependencies,
                )
            )

        declared = {spec.address for spec in manifest.resources}
        orphans = [r for a, r in self.state.resources.items() if a not in declared]
        plan.changes.extend(self._delete_changes(orphans))

        logger.info(f"Plan: {plan.summary()}")
        return plan

    def plan_destroy(self) -> Plan:
        """Plan the deletion of every resource in state."""
        return Plan(changes=self._delete_changes(list(self.state.resources.values())))

    def _delete_changes(self, resources: List[ResourceState]) -> List[ResourceChange]:
        ordered = dependency_order(resources, lambda r: r.dependencies)
        return [
            ResourceChange(
                address=r.address,
                resource_type=r.type,
                name=r.name,
                action=ChangeAction.DELETE,
                before=r.attributes,
                dependencies=r.dependencies,
            )
            for r in reversed(ordered)
        ]

    async def apply(
        self, manifest: Optional[Manifest], plan: Optional[Plan] = None
    ) -> ApplyResult:
        """
        Execute a plan, computing one first if none is given.

        Creates and updates run in dependency order, then deletes in
        reverse dependency order. State is saved after every operation.
        The first failure stops the run.
        """
        if plan is None:
            if manifest is None:
                raise ValueError("apply needs a manifest or a plan")
            plan = await self.plan(manifest)

        result = ApplyResult()
        lookup = self._lookup(plan.data)

        upserts = [
            c for c in plan.changes if c.action in (ChangeAction.CREATE, ChangeAction.UPDATE)
        ]
        deletes = [c for c in plan.changes if c.action == ChangeAction.DELETE]

        for change in upserts + deletes:
            try:
                await self._apply_change(change, manifest, lookup, result)
            except (ProviderError, ConfigValidationError, ManifestError, StateError) as e:
                logger.error(f"Failed to {change.action.value} {change.address}: {e}")
                result.error_message = str(e)
                result.failed_address = change.address
                return result

        result.success = True
        logger.info(
            f"Apply complete: {result.resources_created} created, "
            f"{result.resources_updated} updated, {result.resources_deleted} deleted"
        )
        return result

    async def _apply_change(
        self,
        change: ResourceChange,
        manifest: Optional[Manifest],
        lookup: Any,
        result: ApplyResult,
    ) -> None:
        if change.action == ChangeAction.DELETE:
            current = self.state.get(change.address)
            if current is None:
                return
            plugin = self._state_plugin(current)
            logger.info(f"Deleting {change.address} [id={current.id}]")
            await plugin.delete(dict(current.attributes, id=current.id))
            self.state.remove(change.address)
            self.state.save()
            result.resources_deleted += 1
            await self._publish(
                EventType.DELETED, change.address, change.resource_type, current.id
            )
            return

        if manifest is None:
            raise ManifestError(f"{change.address}: no manifest to apply from")

        # Resolve again now that earlier resources have real values
        spec = manifest.resource(change.address)
        plugin = self.registry.get_resource_plugin(spec.type)
        config = self._desired_config(spec, plugin, lookup)
        dependencies = [d for d in spec.dependencies if not d.startswith("data.")]

        if change.action == ChangeAction.CREATE:
            logger.info(f"Creating {change.address}")
            attributes = await plugin.create(config)
            event_type = EventType.CREATED
            result.resources_created += 1
        else:
            current = self.state.get(change.address)
            logger.info(f"Updating {change.address} [id={current.id}]")
            attributes = await plugin.update(
                config, dict(current.attributes, id=current.id)
            )
            event_type = EventType.UPDATED
            result.resources_updated += 1

        resource = ResourceState(
            type=spec.type,
            name=spec.name,
            id=attributes["id"],
            attributes=attributes,
            dependencies=dependencies,
        )
        self.state.put(resource)
        self.state.save()
        await self._publish(event_type, change.address, spec.type, resource.id)

    async def destroy(self) -> ApplyResult:
        """Delete every resource in state."""
        return await self.apply(None, self.plan_destroy())

    async def import_resource(self, address: str, resource_id: str) -> ResourceState:
        """
        Bring an existing remote resource under management.

        Args:
            address: The address to record it at, <type>.<name>
            resource_id: The remote ID

        Raises:
            ManifestError: If the address is malformed or already managed.
        """
        parts = address.split(".")
        if len(parts) != 2 or not all(parts):
            raise ManifestError(f"Invalid resource address: {address}")
        type_name, name = parts

        if not self.registry.has_resource_plugin(type_name):
            raise ManifestError(f"{address}: unknown resource type {type_name}")
        if self.state.get(address) is not None:
            raise ManifestError(f"{address} is already managed")

        plugin = self.registry.get_resource_plugin(type_name)
        logger.info(f"Importing {address} from id {resource_id}")
        attributes = await plugin.import_state(resource_id)

        resource = ResourceState(
            type=type_name,
            name=name,
            id=attributes.get("id") or resource_id,
            attributes=attributes,
        )
        self.state.put(resource)
        self.state.save()
        await self._publish(EventType.IMPORTED, address, type_name, resource.id)
        return resource

    def remove(self, address: str) -> ResourceState:
        """Forget a resource without touching the remote."""
        resource = self.state.remove(address)
        if resource is None:
            raise StateError(f"No resource in state at {address}")
        self.state.save()
        logger.info(f"Removed {address} from state")
        return resource

    def sensitive(self, resource_type: str) -> set:
        """Sensitive attribute names of a resource type."""
        if not self.registry.has_resource_plugin(resource_type):
            return set()
        return sensitive_attributes(self.registry.get_resource_plugin(resource_type).schema)

    async def _publish(
        self, event_type: EventType, address: str, resource_type: str, resource_id: str
    ) -> None:
        if self._event_bus is None:
            return
        await self._event_bus.publish(
            ResourceEvent.for_resource(event_type, address, resource_type, resource_id)
        )
