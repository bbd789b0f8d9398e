"""
Database Manager - PostgreSQL-backed object store.

Stores Ingresses and their owned Routes. Every write bumps the object's
resource_version and conditional writes are checked against it, giving the
controller optimistic concurrency. Routes reference their controlling
Ingress by uid and are removed with it (ON DELETE CASCADE).
"""

import json
import logging
import uuid
from typing import Any, Dict, List, Optional

import asyncpg

from events import EventBus, EventType, ObjectEvent
from migrate import run_migrations
from objects import Ingress, IngressStatus, ObjectMeta, OwnerReference, Route

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Base class for object store errors."""


class NotFoundError(StoreError):
    """Raised when an object does not exist."""

    def __init__(self, kind: str, namespace: str, name: str):
        self.kind = kind
        self.namespace = namespace
        self.name = name
        super().__init__(f"{kind} {namespace}/{name} not found")


class ConflictError(StoreError):
    """Raised when a write is based on a stale resource_version."""

    def __init__(self, kind: str, namespace: str, name: str):
        self.kind = kind
        self.namespace = namespace
        self.name = name
        super().__init__(
            f"Operation cannot be fulfilled on {kind} {namespace}/{name}: "
            f"the object has been modified; apply your changes to the latest "
            f"version and try again"
        )


class AlreadyExistsError(StoreError):
    """Raised when creating an object whose name is taken."""

    def __init__(self, kind: str, namespace: str, name: str):
        self.kind = kind
        self.namespace = namespace
        self.name = name
        super().__init__(f"{kind} {namespace}/{name} already exists")


class DatabaseManager:
    """Manages PostgreSQL operations for Ingresses and Routes."""

    def __init__(
        self,
        host: str,
        port: int,
        database: str,
        user: str,
        password: str,
        min_pool_size: int = 5,
        max_pool_size: int = 20,
    ):
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.pool: Optional[asyncpg.Pool] = None
        self._event_bus: Optional[EventBus] = None

    def set_event_bus(self, event_bus: EventBus) -> None:
        """Publish an event on this bus for every write."""
        self._event_bus = event_bus

    async def connect(self):
        """Establish connection pool to PostgreSQL."""
        self.pool = await asyncpg.create_pool(
            host=self.host,
            port=self.port,
            database=self.database,
            user=self.user,
            password=self.password,
            min_size=self.min_pool_size,
            max_size=self.max_pool_size,
            command_timeout=60,  # Query timeout
        )
        logger.info(
            f"Connected to PostgreSQL (pool: {self.min_pool_size}-{self.max_pool_size})"
        )

    async def close(self):
        """Close the connection pool."""
        if self.pool:
            await self.pool.close()
            logger.info("Closed PostgreSQL connection")

    def _ensure_connected(self) -> None:
        """Ensure the database connection pool is established."""
        if self.pool is None:
            raise RuntimeError(
                "Database not connected. Call connect() before performing operations."
            )

    async def initialize_schema(self) -> None:
        """Apply database migrations to bring schema up to date."""
        self._ensure_connected()
        await run_migrations(self.pool)
        logger.info("Database schema initialized")

    async def _publish(self, event_type: EventType, obj: Any) -> None:
        if self._event_bus is not None:
            await self._event_bus.publish(ObjectEvent.from_object(event_type, obj))

    async def _raise_missing_or_conflict(
        self, conn: asyncpg.Connection, table: str, kind: str, namespace: str, name: str
    ) -> None:
        """Explain why a conditional write matched no row."""
        exists = await conn.fetchval(
            f"SELECT 1 FROM {table} WHERE namespace = $1 AND name = $2",
            namespace,
            name,
        )
        if exists:
            raise ConflictError(kind, namespace, name)
        raise NotFoundError(kind, namespace, name)

    # ==================== Ingress Methods ====================

    async def get_ingress(self, namespace: str, name: str) -> Ingress:
        """
        Get an Ingress by namespace and name.

        Raises:
            NotFoundError: If no such Ingress exists.
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM ingresses WHERE namespace = $1 AND name = $2",
                namespace,
                name,
            )
            if not row:
                raise NotFoundError(Ingress.KIND, namespace, name)
            return self._parse_ingress_row(row)

    async def list_ingresses(
        self, namespace: Optional[str] = None, limit: int = 1000
    ) -> List[Ingress]:
        """List Ingresses, optionally restricted to one namespace."""
        async with self.pool.acquire() as conn:
            query = "SELECT * FROM ingresses WHERE 1=1"
            params = []
            param_count = 0

            if namespace:
                param_count += 1
                query += f" AND namespace = ${param_count}"
                params.append(namespace)

            param_count += 1
            query += f" ORDER BY namespace, name LIMIT ${param_count}"
            params.append(limit)

            rows = await conn.fetch(query, *params)
            return [self._parse_ingress_row(row) for row in rows]

    async def create_ingress(self, ingress: Ingress) -> Ingress:
        """
        Create a new Ingress.

        The store assigns uid, generation and resource_version. Any status
        on the passed object is ignored.

        Raises:
            AlreadyExistsError: If the name is taken in the namespace.
        """
        meta = ingress.metadata
        async with self.pool.acquire() as conn:
            try:
                row = await conn.fetchrow(
                    """
                    INSERT INTO ingresses (
                        uid, namespace, name, spec, status, labels, annotations,
                        generation, resource_version
                    )
                    VALUES ($1, $2, $3, $4, $5, $6, $7, 1, 1)
                    RETURNING *
                    """,
                    str(uuid.uuid4()),
                    meta.namespace,
                    meta.name,
                    json.dumps(ingress.spec),
                    json.dumps(IngressStatus().to_dict()),
                    json.dumps(meta.labels),
                    json.dumps(meta.annotations),
                )
            except asyncpg.UniqueViolationError:
                raise AlreadyExistsError(Ingress.KIND, meta.namespace, meta.name)

        created = self._parse_ingress_row(row)
        logger.info(f"Created ingress {created.key} with uid {created.metadata.uid}")
        await self._publish(EventType.CREATED, created)
        return created

    async def update_ingress_spec(
        self,
        namespace: str,
        name: str,
        spec: Dict[str, Any],
        labels: Optional[Dict[str, str]] = None,
        annotations: Optional[Dict[str, str]] = None,
        resource_version: Optional[int] = None,
    ) -> Ingress:
        """
        Update an Ingress' spec (and optionally labels/annotations).

        Status is never touched. Generation is bumped only when the spec
        actually changes.

        Args:
            resource_version: If given, the write only succeeds when the
                stored object is still at this version.

        Raises:
            NotFoundError: If no such Ingress exists.
            ConflictError: If resource_version no longer matches.
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE ingresses
                SET generation = CASE WHEN spec = $1::jsonb
                                      THEN generation ELSE generation + 1 END,
                    spec = $1::jsonb,
                    labels = COALESCE($2::jsonb, labels),
                    annotations = COALESCE($3::jsonb, annotations),
                    resource_version = resource_version + 1,
                    updated_at = NOW()
                WHERE namespace = $4
                  AND name = $5
                  AND ($6::bigint IS NULL OR resource_version = $6)
                RETURNING *
                """,
                json.dumps(spec),
                json.dumps(labels) if labels is not None else None,
                json.dumps(annotations) if annotations is not None else None,
                namespace,
                name,
                resource_version,
            )
            if not row:
                await self._raise_missing_or_conflict(
                    conn, "ingresses", Ingress.KIND, namespace, name
                )

        updated = self._parse_ingress_row(row)
        logger.info(
            f"Updated ingress {updated.key} to generation {updated.metadata.generation}"
        )
        await self._publish(EventType.MODIFIED, updated)
        return updated

    async def update_ingress_status(self, ingress: Ingress) -> Ingress:
        """
        Persist only the status of an Ingress.

        The write is conditioned on ingress.metadata.resource_version, so
        a concurrent write since the object was read fails with a conflict
        instead of being overwritten. Spec edits made concurrently on the
        server are preserved.

        Raises:
            NotFoundError: If the Ingress has been deleted.
            ConflictError: If the Ingress changed since it was read.
        """
        meta = ingress.metadata
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE ingresses
                SET status = $1,
                    resource_version = resource_version + 1,
                    updated_at = NOW()
                WHERE namespace = $2 AND name = $3 AND resource_version = $4
                RETURNING *
                """,
                json.dumps(ingress.status.to_dict()),
                meta.namespace,
                meta.name,
                meta.resource_version,
            )
            if not row:
                await self._raise_missing_or_conflict(
                    conn, "ingresses", Ingress.KIND, meta.namespace, meta.name
                )

        updated = self._parse_ingress_row(row)
        logger.debug(
            f"Updated status of ingress {updated.key} "
            f"(resource_version {updated.metadata.resource_version})"
        )
        await self._publish(EventType.MODIFIED, updated)
        return updated

    async def delete_ingress(self, namespace: str, name: str) -> None:
        """
        Delete an Ingress; its owned Routes are removed by the cascade.

        Raises:
            NotFoundError: If no such Ingress exists.
        """
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                route_rows = await conn.fetch(
                    """
                    SELECT r.* FROM routes r
                    JOIN ingresses i ON r.owner_uid = i.uid
                    WHERE i.namespace = $1 AND i.name = $2
                    """,
                    namespace,
                    name,
                )
                row = await conn.fetchrow(
                    "DELETE FROM ingresses WHERE namespace = $1 AND name = $2 "
                    "RETURNING *",
                    namespace,
                    name,
                )
                if not row:
                    raise NotFoundError(Ingress.KIND, namespace, name)

        deleted = self._parse_ingress_row(row)
        routes = [self._parse_route_row(r) for r in route_rows]
        logger.info(f"Deleted ingress {deleted.key} and {len(routes)} owned route(s)")

        await self._publish(EventType.DELETED, deleted)
        for route in routes:
            await self._publish(EventType.DELETED, route)

    # ==================== Route Methods ====================

    async def get_route(self, namespace: str, name: str) -> Route:
        """
        Get a Route by namespace and name.

        Raises:
            NotFoundError: If no such Route exists.
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM routes WHERE namespace = $1 AND name = $2",
                namespace,
                name,
            )
            if not row:
                raise NotFoundError(Route.KIND, namespace, name)
            return self._parse_route_row(row)

    async def list_routes_for_owner(self, owner_uid: str) -> List[Route]:
        """List the Routes controlled by the object with the given uid."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT * FROM routes WHERE owner_uid = $1 ORDER BY namespace, name",
                owner_uid,
            )
            return [self._parse_route_row(row) for row in rows]

    async def create_route(self, route: Route) -> Route:
        """
        Create a Route.

        Raises:
            ValueError: If the Route has no controlling owner reference.
            AlreadyExistsError: If the name is taken in the namespace.
            NotFoundError: If the owner no longer exists.
        """
        owner = route.controller_owner()
        if owner is None:
            raise ValueError(f"Route {route.key} has no controlling owner reference")

        meta = route.metadata
        async with self.pool.acquire() as conn:
            try:
                row = await conn.fetchrow(
                    """
                    INSERT INTO routes (
                        uid, namespace, name, owner_uid, owner_references,
                        labels, annotations, spec, status,
                        generation, resource_version
                    )
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, 1, 1)
                    RETURNING *
                    """,
                    str(uuid.uuid4()),
                    meta.namespace,
                    meta.name,
                    owner.uid,
                    json.dumps(self._dump_owner_references(meta.owner_references)),
                    json.dumps(meta.labels),
                    json.dumps(meta.annotations),
                    json.dumps(route.spec),
                    json.dumps(route.status),
                )
            except asyncpg.UniqueViolationError:
                raise AlreadyExistsError(Route.KIND, meta.namespace, meta.name)
            except asyncpg.ForeignKeyViolationError:
                raise NotFoundError(owner.kind, meta.namespace, owner.name)

        created = self._parse_route_row(row)
        logger.info(f"Created route {created.key} owned by {owner.kind} {owner.name}")
        await self._publish(EventType.CREATED, created)
        return created

    async def update_route(self, route: Route) -> Route:
        """
        Update a Route's spec, labels, annotations and owner references.

        Conditioned on route.metadata.resource_version.

        Raises:
            NotFoundError: If the Route has been deleted.
            ConflictError: If the Route changed since it was read.
        """
        owner = route.controller_owner()
        if owner is None:
            raise ValueError(f"Route {route.key} has no controlling owner reference")

        meta = route.metadata
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE routes
                SET generation = CASE WHEN spec = $1::jsonb
                                      THEN generation ELSE generation + 1 END,
                    spec = $1::jsonb,
                    labels = $2,
                    annotations = $3,
                    owner_uid = $4,
                    owner_references = $5,
                    resource_version = resource_version + 1,
                    updated_at = NOW()
                WHERE namespace = $6 AND name = $7 AND resource_version = $8
                RETURNING *
                """,
                json.dumps(route.spec),
                json.dumps(meta.labels),
                json.dumps(meta.annotations),
                owner.uid,
                json.dumps(self._dump_owner_references(meta.owner_references)),
                meta.namespace,
                meta.name,
                meta.resource_version,
            )
            if not row:
                await self._raise_missing_or_conflict(
                    conn, "routes", Route.KIND, meta.namespace, meta.name
                )

        updated = self._parse_route_row(row)
        logger.info(f"Updated route {updated.key}")
        await self._publish(EventType.MODIFIED, updated)
        return updated

    async def delete_route(self, namespace: str, name: str) -> None:
        """
        Delete a Route.

        Raises:
            NotFoundError: If no such Route exists.
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "DELETE FROM routes WHERE namespace = $1 AND name = $2 RETURNING *",
                namespace,
                name,
            )
            if not row:
                raise NotFoundError(Route.KIND, namespace, name)

        deleted = self._parse_route_row(row)
        logger.info(f"Deleted route {deleted.key}")
        await self._publish(EventType.DELETED, deleted)

    # ==================== Row Parsing ====================

    @staticmethod
    def _load_json(value: Any, default: Any) -> Any:
        if value is None:
            return default
        if isinstance(value, str):
            return json.loads(value) if value else default
        return value

    @staticmethod
    def _dump_owner_references(refs: List[OwnerReference]) -> List[Dict[str, Any]]:
        return [
            {
                "kind": ref.kind,
                "name": ref.name,
                "uid": ref.uid,
                "controller": ref.controller,
            }
            for ref in refs
        ]

    def _parse_meta(self, row: asyncpg.Record) -> ObjectMeta:
        result = dict(row)
        return ObjectMeta(
            name=result["name"],
            namespace=result["namespace"],
            uid=str(result.get("uid") or ""),
            resource_version=result.get("resource_version", 0),
            generation=result.get("generation", 0),
            labels=self._load_json(result.get("labels"), {}),
            annotations=self._load_json(result.get("annotations"), {}),
            owner_references=[
                OwnerReference.from_dict(ref)
                for ref in self._load_json(result.get("owner_references"), [])
            ],
        )

    def _parse_ingress_row(self, row: asyncpg.Record) -> Ingress:
        """
        Parse an ingresses row into an Ingress, converting JSON fields.

        Args:
            row: An asyncpg.Record from a database query

        Returns:
            The Ingress with spec and status decoded
        """
        result = dict(row)
        return Ingress(
            metadata=self._parse_meta(row),
            spec=self._load_json(result.get("spec"), {}),
            status=IngressStatus.from_dict(self._load_json(result.get("status"), {})),
        )

    def _parse_route_row(self, row: asyncpg.Record) -> Route:
        """Parse a routes row into a Route, converting JSON fields."""
        result = dict(row)
        return Route(
            metadata=self._parse_meta(row),
            spec=self._load_json(result.get("spec"), {}),
            status=self._load_json(result.get("status"), {}),
        )
