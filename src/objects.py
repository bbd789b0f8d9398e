"""
Object Model - Ingress and Route types shared by the store, the translators
and the controller.

Objects follow the Kubernetes shape: metadata identifying the object, an
owner-authored spec and a controller-owned status.
"""

import copy
import dataclasses
import json
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, NamedTuple, Optional

CONDITION_READY = "Ready"
CONDITION_NETWORK_CONFIGURED = "NetworkConfigured"
CONDITION_LOAD_BALANCER_READY = "LoadBalancerReady"

# Conditions that Ready is derived from
DEPENDENT_CONDITIONS = (CONDITION_NETWORK_CONFIGURED, CONDITION_LOAD_BALANCER_READY)


class NamespacedName(NamedTuple):
    """Reconcile key identifying a single object."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass
class OwnerReference:
    """Back-link from a dependent object to the object that owns it."""

    kind: str
    name: str
    uid: str
    controller: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OwnerReference":
        return cls(
            kind=data["kind"],
            name=data["name"],
            uid=data.get("uid", ""),
            controller=data.get("controller", True),
        )


@dataclass
class ObjectMeta:
    """Identity and bookkeeping for a stored object."""

    name: str
    namespace: str = "default"
    uid: str = ""
    resource_version: int = 0
    generation: int = 0
    labels: Dict[str, str] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)
    owner_references: List[OwnerReference] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ObjectMeta":
        return cls(
            name=data["name"],
            namespace=data.get("namespace", "default"),
            uid=data.get("uid", ""),
            resource_version=data.get("resource_version", 0),
            generation=data.get("generation", 0),
            labels=dict(data.get("labels") or {}),
            annotations=dict(data.get("annotations") or {}),
            owner_references=[
                OwnerReference.from_dict(ref)
                for ref in data.get("owner_references") or []
            ],
        )


@dataclass
class Condition:
    """A single observed condition of an object."""

    type: str
    status: str = "Unknown"
    reason: str = ""
    message: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Condition":
        return cls(
            type=data["type"],
            status=data.get("status", "Unknown"),
            reason=data.get("reason", ""),
            message=data.get("message", ""),
        )


@dataclass
class IngressStatus:
    """
    Observed state of an Ingress.

    Written only by the reconciler. Ready is derived from the
    NetworkConfigured and LoadBalancerReady conditions and is never set
    directly.
    """

    observed_generation: int = 0
    conditions: List[Condition] = field(default_factory=list)
    load_balancer: List[Dict[str, Any]] = field(default_factory=list)

    def get_condition(self, condition_type: str) -> Optional[Condition]:
        for condition in self.conditions:
            if condition.type == condition_type:
                return condition
        return None

    def set_condition(
        self,
        condition_type: str,
        status: str,
        reason: str = "",
        message: str = "",
    ) -> None:
        """Set a condition, replacing any existing one of the same type."""
        condition = self.get_condition(condition_type)
        if condition is None:
            self.conditions.append(
                Condition(
                    type=condition_type, status=status, reason=reason, message=message
                )
            )
        else:
            condition.status = status
            condition.reason = reason
            condition.message = message

        if condition_type != CONDITION_READY:
            self._recompute_ready()

    def initialize_conditions(self) -> None:
        """Add Unknown conditions for any that have never been set."""
        for condition_type in DEPENDENT_CONDITIONS:
            if self.get_condition(condition_type) is None:
                self.set_condition(condition_type, "Unknown")
        self._recompute_ready()

    def mark_network_configured(self) -> None:
        self.set_condition(CONDITION_NETWORK_CONFIGURED, "True")

    def mark_network_failed(self, reason: str, message: str) -> None:
        self.set_condition(CONDITION_NETWORK_CONFIGURED, "False", reason, message)

    def mark_load_balancer_ready(self, load_balancer: List[Dict[str, Any]]) -> None:
        self.load_balancer = copy.deepcopy(load_balancer)
        self.set_condition(CONDITION_LOAD_BALANCER_READY, "True")

    def mark_load_balancer_failed(self, reason: str, message: str) -> None:
        self.set_condition(CONDITION_LOAD_BALANCER_READY, "False", reason, message)

    def is_ready(self) -> bool:
        ready = self.get_condition(CONDITION_READY)
        return ready is not None and ready.status == "True"

    def _recompute_ready(self) -> None:
        dependents = [self.get_condition(t) for t in DEPENDENT_CONDITIONS]
        failing = [c for c in dependents if c is not None and c.status == "False"]

        if failing:
            # Surface the first failing dependent's reason on Ready
            self.set_condition(
                CONDITION_READY, "False", failing[0].reason, failing[0].message
            )
        elif all(c is not None and c.status == "True" for c in dependents):
            self.set_condition(CONDITION_READY, "True")
        else:
            self.set_condition(CONDITION_READY, "Unknown")

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "IngressStatus":
        data = data or {}
        return cls(
            observed_generation=data.get("observed_generation", 0),
            conditions=[Condition.from_dict(c) for c in data.get("conditions") or []],
            load_balancer=list(data.get("load_balancer") or []),
        )


@dataclass
class Ingress:
    """Declarative routing intent authored by users."""

    KIND: ClassVar[str] = "Ingress"

    metadata: ObjectMeta
    spec: Dict[str, Any] = field(default_factory=dict)
    status: IngressStatus = field(default_factory=IngressStatus)

    @property
    def key(self) -> NamespacedName:
        return NamespacedName(self.metadata.namespace, self.metadata.name)

    def deep_copy(self) -> "Ingress":
        """Return an independent copy safe to mutate."""
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        data = dataclasses.asdict(self)
        data["kind"] = self.KIND
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Ingress":
        return cls(
            metadata=ObjectMeta.from_dict(data["metadata"]),
            spec=copy.deepcopy(data.get("spec") or {}),
            status=IngressStatus.from_dict(data.get("status")),
        )


@dataclass
class Route:
    """Network route derived from an Ingress rule."""

    KIND: ClassVar[str] = "Route"

    metadata: ObjectMeta
    spec: Dict[str, Any] = field(default_factory=dict)
    status: Dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> NamespacedName:
        return NamespacedName(self.metadata.namespace, self.metadata.name)

    def controller_owner(self) -> Optional[OwnerReference]:
        """Return the single controlling owner reference, if any."""
        for ref in self.metadata.owner_references:
            if ref.controller:
                return ref
        return None

    def deep_copy(self) -> "Route":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        data = dataclasses.asdict(self)
        data["kind"] = self.KIND
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Route":
        return cls(
            metadata=ObjectMeta.from_dict(data["metadata"]),
            spec=copy.deepcopy(data.get("spec") or {}),
            status=copy.deepcopy(data.get("status") or {}),
        )


def _normalize(value: Any) -> Any:
    """Reduce a value to a canonical, order-insensitive form."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        value = dataclasses.asdict(value)
    if isinstance(value, dict):
        return {str(k): _normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        items = [_normalize(v) for v in value]
        return sorted(items, key=lambda v: json.dumps(v, sort_keys=True, default=str))
    return value


def semantic_equal(a: Any, b: Any) -> bool:
    """
    Deep structural equality that ignores list ordering.

    Two statuses that carry the same conditions in a different order are
    considered equal, so reordering alone never causes a write.
    """
    return _normalize(a) == _normalize(b)
