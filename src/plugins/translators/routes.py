"""
Route Translator - realizes an Ingress as one Route per public host.

Each externally visible host of each rule gets a Route that sends traffic to
the shared ingress gateway service. Routes that no longer correspond to a
host are deleted. Cluster-local hosts are served by the gateway directly and
get no Route.
"""

import hashlib
import logging
import os
from typing import Any, Dict, List, Optional

from db import NotFoundError, StoreError
from objects import Ingress, ObjectMeta, OwnerReference, Route, semantic_equal
from plugins.translators.base import IngressTranslator, TranslationError

logger = logging.getLogger(__name__)

LABEL_INGRESS_NAME = "ingress-operator.io/ingress-name"
LABEL_INGRESS_NAMESPACE = "ingress-operator.io/ingress-namespace"
ANNOTATION_TIMEOUT = "ingress-operator.io/timeout"

VISIBILITY_CLUSTER_LOCAL = "ClusterLocal"
MAX_NAME_LENGTH = 63


def route_name(ingress_name: str, host: str) -> str:
    """Deterministic Route name for a host of an Ingress."""
    suffix = hashlib.sha256(host.encode()).hexdigest()[:8]
    prefix = ingress_name[: MAX_NAME_LENGTH - len(suffix) - 1].rstrip("-")
    return f"{prefix}-{suffix}"


class RouteTranslator(IngressTranslator):
    """Translator that maps Ingress rules to Routes on the ingress gateway."""

    def __init__(self):
        self.gateway_service = "ingress-gateway"
        self.gateway_namespace = "ingress-system"
        self.target_port = "http2"
        self.cluster_domain = "cluster.local"

    @property
    def name(self) -> str:
        return "routes"

    @property
    def version(self) -> str:
        return "1.0.0"

    @classmethod
    def load_config_from_env(cls) -> Dict[str, Any]:
        """Load gateway settings from environment variables."""
        return {
            "gateway_service": os.getenv("GATEWAY_SERVICE", "ingress-gateway"),
            "gateway_namespace": os.getenv("GATEWAY_NAMESPACE", "ingress-system"),
            "target_port": os.getenv("GATEWAY_TARGET_PORT", "http2"),
            "cluster_domain": os.getenv("CLUSTER_DOMAIN", "cluster.local"),
        }

    async def initialize(self, config: Dict[str, Any]) -> None:
        self.gateway_service = config.get("gateway_service", self.gateway_service)
        self.gateway_namespace = config.get(
            "gateway_namespace", self.gateway_namespace
        )
        self.target_port = config.get("target_port", self.target_port)
        self.cluster_domain = config.get("cluster_domain", self.cluster_domain)
        logger.info(
            f"Route translator targeting {self.gateway_service}."
            f"{self.gateway_namespace}:{self.target_port}"
        )

    @property
    def gateway_domain(self) -> str:
        return (
            f"{self.gateway_service}.{self.gateway_namespace}.svc."
            f"{self.cluster_domain}"
        )

    def is_cluster_local_host(self, host: str) -> bool:
        return host.endswith(f".svc.{self.cluster_domain}") or host.endswith(".svc")

    async def reconcile(self, ingress: Ingress) -> None:
        if self._store is None:
            raise RuntimeError("Route translator has no store; call set_store()")

        status = ingress.status
        status.initialize_conditions()
        status.observed_generation = ingress.metadata.generation

        try:
            desired = self.make_routes(ingress)
        except TranslationError as e:
            status.mark_network_failed(e.reason, e.message)
            raise

        try:
            existing = await self._store.list_routes_for_owner(ingress.metadata.uid)
            for route in desired:
                await self._reconcile_route(ingress, route)

            desired_keys = {route.key for route in desired}
            for route in existing:
                if route.key not in desired_keys:
                    await self._delete_route(route)
        except TranslationError as e:
            status.mark_load_balancer_failed(e.reason, e.message)
            raise
        except StoreError as e:
            message = f"Failed to reconcile routes for {ingress.key}: {e}"
            status.mark_load_balancer_failed("RouteReconcileFailed", message)
            raise TranslationError(message, reason="RouteReconcileFailed") from e

        status.mark_network_configured()
        status.mark_load_balancer_ready([{"domain_internal": self.gateway_domain}])

    def make_routes(self, ingress: Ingress) -> List[Route]:
        """
        Compute the Routes an Ingress requires.

        Raises:
            TranslationError: If the spec cannot be interpreted.
        """
        spec = ingress.spec
        rules = spec.get("rules") or []
        if not isinstance(rules, list):
            raise TranslationError(
                f"spec.rules of {ingress.key} must be a list", reason="InvalidSpec"
            )

        default_visibility = spec.get("visibility", "ExternalIP")
        tls_hosts = set()
        for tls in spec.get("tls") or []:
            tls_hosts.update(tls.get("hosts") or [])

        routes: Dict[str, Route] = {}
        for index, rule in enumerate(rules):
            if not isinstance(rule, dict):
                raise TranslationError(
                    f"spec.rules[{index}] of {ingress.key} must be an object",
                    reason="InvalidSpec",
                )
            if rule.get("visibility", default_visibility) == VISIBILITY_CLUSTER_LOCAL:
                continue

            for host in rule.get("hosts") or []:
                if self.is_cluster_local_host(host):
                    continue
                route = self._make_route(ingress, host, rule, host in tls_hosts)
                routes[route.metadata.name] = route

        return list(routes.values())

    def _make_route(
        self, ingress: Ingress, host: str, rule: Dict[str, Any], tls: bool
    ) -> Route:
        meta = ingress.metadata
        annotations = {}
        timeout = self._rule_timeout(rule)
        if timeout:
            annotations[ANNOTATION_TIMEOUT] = timeout

        route_spec: Dict[str, Any] = {
            "host": host,
            "to": {
                "kind": "Service",
                "name": self.gateway_service,
                "namespace": self.gateway_namespace,
                "weight": 100,
            },
            "port": {"target_port": self.target_port},
        }
        if tls:
            route_spec["tls"] = {
                "termination": "passthrough",
                "insecure_edge_termination_policy": "Redirect",
            }

        return Route(
            metadata=ObjectMeta(
                name=route_name(meta.name, host),
                namespace=meta.namespace,
                labels={
                    LABEL_INGRESS_NAME: meta.name,
                    LABEL_INGRESS_NAMESPACE: meta.namespace,
                },
                annotations=annotations,
                owner_references=[
                    OwnerReference(
                        kind=Ingress.KIND,
                        name=meta.name,
                        uid=meta.uid,
                        controller=True,
                    )
                ],
            ),
            spec=route_spec,
        )

    @staticmethod
    def _rule_timeout(rule: Dict[str, Any]) -> Optional[str]:
        # A Route carries one timeout per host; the longest path timeout wins
        timeouts = [
            int(path["timeout_seconds"])
            for path in (rule.get("http") or {}).get("paths") or []
            if path.get("timeout_seconds")
        ]
        return f"{max(timeouts)}s" if timeouts else None

    async def _reconcile_route(self, ingress: Ingress, desired: Route) -> None:
        try:
            existing = await self._store.get_route(*desired.key)
        except NotFoundError:
            await self._store.create_route(desired)
            return

        owner = existing.controller_owner()
        if owner is None or owner.uid != ingress.metadata.uid:
            raise TranslationError(
                f"Route {existing.key} exists and is not owned by {ingress.key}",
                reason="NotOwned",
            )

        if (
            semantic_equal(existing.spec, desired.spec)
            and semantic_equal(existing.metadata.labels, desired.metadata.labels)
            and semantic_equal(
                existing.metadata.annotations, desired.metadata.annotations
            )
        ):
            return

        updated = existing.deep_copy()
        updated.spec = desired.spec
        updated.metadata.labels = desired.metadata.labels
        updated.metadata.annotations = desired.metadata.annotations
        await self._store.update_route(updated)

    async def _delete_route(self, route: Route) -> None:
        try:
            await self._store.delete_route(*route.key)
        except NotFoundError:
            logger.debug(f"Stale route {route.key} already gone")
