"""Pytest configuration and fixtures."""

import copy
import uuid
from typing import Dict, List, Optional, Tuple

import pytest
from unittest.mock import AsyncMock, MagicMock

from db import AlreadyExistsError, ConflictError, NotFoundError
from events import EventBus, EventType, ObjectEvent
from objects import Ingress, IngressStatus, ObjectMeta, Route


class FakeObjectStore:
    """
    In-memory stand-in for DatabaseManager.

    Keeps the same resource_version and cascade semantics, hands out copies
    so callers can't mutate stored state, and counts the calls tests care
    about. Set ``get_error`` or ``status_error`` to make the next calls fail.
    """

    def __init__(self, event_bus: Optional[EventBus] = None):
        self.ingresses: Dict[Tuple[str, str], Ingress] = {}
        self.routes: Dict[Tuple[str, str], Route] = {}
        self.event_bus = event_bus

        self.get_calls = 0
        self.status_updates: List[Ingress] = []
        self.route_writes = 0

        self.get_error: Optional[Exception] = None
        self.status_error: Optional[Exception] = None

    async def _publish(self, event_type: EventType, obj) -> None:
        if self.event_bus is not None:
            await self.event_bus.publish(ObjectEvent.from_object(event_type, obj))

    # Ingresses

    def add_ingress(self, ingress: Ingress) -> Ingress:
        """Seed an Ingress without going through create_ingress()."""
        stored = ingress.deep_copy()
        meta = stored.metadata
        meta.uid = meta.uid or str(uuid.uuid4())
        meta.generation = meta.generation or 1
        meta.resource_version = meta.resource_version or 1
        self.ingresses[tuple(stored.key)] = stored
        return stored.deep_copy()

    def stored_ingress(self, namespace: str, name: str) -> Ingress:
        return self.ingresses[(namespace, name)]

    async def get_ingress(self, namespace: str, name: str) -> Ingress:
        self.get_calls += 1
        if self.get_error is not None:
            raise self.get_error
        if (namespace, name) not in self.ingresses:
            raise NotFoundError(Ingress.KIND, namespace, name)
        return self.ingresses[(namespace, name)].deep_copy()

    async def list_ingresses(self, namespace=None, limit=1000) -> List[Ingress]:
        items = [
            i.deep_copy()
            for key, i in sorted(self.ingresses.items())
            if namespace is None or key[0] == namespace
        ]
        return items[:limit]

    async def create_ingress(self, ingress: Ingress) -> Ingress:
        if tuple(ingress.key) in self.ingresses:
            raise AlreadyExistsError(Ingress.KIND, *ingress.key)
        seeded = ingress.deep_copy()
        seeded.status = IngressStatus()
        seeded.metadata.uid = ""
        seeded.metadata.generation = 0
        seeded.metadata.resource_version = 0
        created = self.add_ingress(seeded)
        await self._publish(EventType.CREATED, created)
        return created

    async def update_ingress_spec(
        self,
        namespace,
        name,
        spec,
        labels=None,
        annotations=None,
        resource_version=None,
    ) -> Ingress:
        stored = self.ingresses.get((namespace, name))
        if stored is None:
            raise NotFoundError(Ingress.KIND, namespace, name)
        meta = stored.metadata
        if resource_version is not None and resource_version != meta.resource_version:
            raise ConflictError(Ingress.KIND, namespace, name)
        if stored.spec != spec:
            meta.generation += 1
        stored.spec = spec
        if labels is not None:
            meta.labels = labels
        if annotations is not None:
            meta.annotations = annotations
        meta.resource_version += 1
        await self._publish(EventType.MODIFIED, stored)
        return stored.deep_copy()

    async def update_ingress_status(self, ingress: Ingress) -> Ingress:
        self.status_updates.append(ingress.deep_copy())
        if self.status_error is not None:
            raise self.status_error

        namespace, name = ingress.key
        stored = self.ingresses.get((namespace, name))
        if stored is None:
            raise NotFoundError(Ingress.KIND, namespace, name)
        if stored.metadata.resource_version != ingress.metadata.resource_version:
            raise ConflictError(Ingress.KIND, namespace, name)

        stored.status = copy.deepcopy(ingress.status)
        stored.metadata.resource_version += 1
        await self._publish(EventType.MODIFIED, stored)
        return stored.deep_copy()

    async def delete_ingress(self, namespace: str, name: str) -> None:
        stored = self.ingresses.pop((namespace, name), None)
        if stored is None:
            raise NotFoundError(Ingress.KIND, namespace, name)
        await self._publish(EventType.DELETED, stored)
        for key, route in list(self.routes.items()):
            owner = route.controller_owner()
            if owner is not None and owner.uid == stored.metadata.uid:
                del self.routes[key]
                await self._publish(EventType.DELETED, route)

    # Routes

    async def get_route(self, namespace: str, name: str) -> Route:
        if (namespace, name) not in self.routes:
            raise NotFoundError(Route.KIND, namespace, name)
        return self.routes[(namespace, name)].deep_copy()

    async def list_routes_for_owner(self, owner_uid: str) -> List[Route]:
        routes = []
        for _, route in sorted(self.routes.items()):
            owner = route.controller_owner()
            if owner is not None and owner.uid == owner_uid:
                routes.append(route.deep_copy())
        return routes

    async def create_route(self, route: Route) -> Route:
        if route.controller_owner() is None:
            raise ValueError(f"Route {route.key} has no controlling owner")
        if tuple(route.key) in self.routes:
            raise AlreadyExistsError(Route.KIND, *route.key)
        stored = route.deep_copy()
        stored.metadata.uid = str(uuid.uuid4())
        stored.metadata.resource_version = 1
        self.routes[tuple(stored.key)] = stored
        self.route_writes += 1
        await self._publish(EventType.CREATED, stored)
        return stored.deep_copy()

    async def update_route(self, route: Route) -> Route:
        stored = self.routes.get(tuple(route.key))
        if stored is None:
            raise NotFoundError(Route.KIND, *route.key)
        if stored.metadata.resource_version != route.metadata.resource_version:
            raise ConflictError(Route.KIND, *route.key)
        updated = route.deep_copy()
        updated.metadata.resource_version += 1
        self.routes[tuple(route.key)] = updated
        self.route_writes += 1
        await self._publish(EventType.MODIFIED, updated)
        return updated.deep_copy()

    async def delete_route(self, namespace: str, name: str) -> None:
        stored = self.routes.pop((namespace, name), None)
        if stored is None:
            raise NotFoundError(Route.KIND, namespace, name)
        self.route_writes += 1
        await self._publish(EventType.DELETED, stored)


@pytest.fixture
def store():
    """In-memory object store."""
    return FakeObjectStore()


@pytest.fixture
def mock_pool():
    """Create a mock asyncpg pool."""
    pool = AsyncMock()
    pool.acquire = MagicMock()
    return pool


@pytest.fixture
def mock_connection():
    """Create a mock asyncpg connection."""
    conn = AsyncMock()
    return conn


@pytest.fixture
def sample_spec():
    """Ingress spec with one public and one cluster-local host."""
    return {
        "visibility": "ExternalIP",
        "rules": [
            {
                "hosts": ["foo.example.com", "foo.default.svc.cluster.local"],
                "http": {
                    "paths": [
                        {
                            "path": "/",
                            "timeout_seconds": 30,
                            "splits": [
                                {
                                    "service_name": "foo",
                                    "service_namespace": "default",
                                    "service_port": 80,
                                    "percent": 100,
                                }
                            ],
                        }
                    ]
                },
            }
        ],
    }


@pytest.fixture
def sample_ingress(sample_spec):
    """Unsaved Ingress default/foo."""
    return Ingress(
        metadata=ObjectMeta(name="foo", namespace="default"),
        spec=sample_spec,
    )


@pytest.fixture
def sample_ingress_row(sample_spec):
    """Row as returned by asyncpg for the ingresses table."""
    return {
        "id": 1,
        "uid": "0b6c1d3e-1111-2222-3333-444455556666",
        "namespace": "default",
        "name": "foo",
        "spec": sample_spec,
        "status": {"observed_generation": 0, "conditions": [], "load_balancer": []},
        "labels": {},
        "annotations": {},
        "generation": 1,
        "resource_version": 1,
    }
