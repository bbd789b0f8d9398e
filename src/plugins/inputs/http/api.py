"""
HTTP Input Plugin - REST API for Ingress management.

Users author Ingress specs through this API and read back what the
controller made of them. Status is read-only here; the controller is its
only writer.
"""

import json
import logging
import re
from typing import Any, Callable, Dict, List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field, field_validator

from config import APIConfig
from db import AlreadyExistsError, ConflictError, NotFoundError, StoreError
from events import EventBus, ObjectEvent
from objects import Ingress, NamespacedName, ObjectMeta, Route
from plugins.inputs.base import InputPlugin, ResourceCallback
from validation import validate_ingress_spec

logger = logging.getLogger(__name__)

# DNS-1123 label, the same rule Kubernetes applies to names and namespaces
NAME_PATTERN = re.compile(r"^[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?$")
MAX_NAME_LENGTH = 63
MAX_SPEC_SIZE = 1024 * 1024

INGRESSES = "/api/v1/namespaces/{namespace}/ingresses"
INGRESS = INGRESSES + "/{name}"


def validate_name_format(value: str, field_name: str) -> str:
    if not value:
        raise ValueError(f"{field_name} cannot be empty")
    if len(value) > MAX_NAME_LENGTH:
        raise ValueError(f"{field_name} cannot exceed {MAX_NAME_LENGTH} characters")
    if not NAME_PATTERN.match(value):
        raise ValueError(
            f"{field_name} must consist of lowercase alphanumeric characters or "
            f"'-', and start and end with an alphanumeric character"
        )
    return value


def validate_spec(value: Dict[str, Any]) -> Dict[str, Any]:
    """Reject oversized or malformed Ingress specs."""
    if len(json.dumps(value)) > MAX_SPEC_SIZE:
        raise ValueError(f"spec exceeds maximum size of {MAX_SPEC_SIZE // 1024}KB")
    is_valid, error = validate_ingress_spec(value)
    if not is_valid:
        raise ValueError(f"Invalid spec: {error}")
    return value


def validate_or_400(value: str, field_name: str) -> None:
    """Path parameters can't use pydantic validators; check them by hand."""
    try:
        validate_name_format(value, field_name)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


class IngressCreate(BaseModel):
    name: str = Field(..., description="Ingress name", examples=["my-app"])
    spec: Dict[str, Any] = Field(default_factory=dict, description="rules and tls")
    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return validate_name_format(v, "name")

    @field_validator("spec")
    @classmethod
    def check_spec(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        return validate_spec(v)


class IngressUpdate(BaseModel):
    """Replacement spec; labels and annotations are kept unless given."""

    spec: Dict[str, Any]
    labels: Optional[Dict[str, str]] = None
    annotations: Optional[Dict[str, str]] = None
    resource_version: Optional[int] = Field(
        None, description="Only update if the Ingress is still at this version"
    )

    @field_validator("spec")
    @classmethod
    def check_spec(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        return validate_spec(v)


class IngressResponse(BaseModel):
    namespace: str
    name: str
    uid: str
    generation: int
    resource_version: int
    labels: Dict[str, str] = {}
    annotations: Dict[str, str] = {}
    spec: Dict[str, Any] = {}
    status: Dict[str, Any] = {}
    ready: bool = False

    @classmethod
    def from_ingress(cls, ingress: Ingress) -> "IngressResponse":
        meta = ingress.metadata
        return cls(
            namespace=meta.namespace,
            name=meta.name,
            uid=meta.uid,
            generation=meta.generation,
            resource_version=meta.resource_version,
            labels=meta.labels,
            annotations=meta.annotations,
            spec=ingress.spec,
            status=ingress.status.to_dict(),
            ready=ingress.status.is_ready(),
        )


class RouteResponse(BaseModel):
    namespace: str
    name: str
    uid: str
    resource_version: int
    owner: Optional[str] = None
    labels: Dict[str, str] = {}
    annotations: Dict[str, str] = {}
    spec: Dict[str, Any] = {}

    @classmethod
    def from_route(cls, route: Route) -> "RouteResponse":
        meta = route.metadata
        owner = route.controller_owner()
        return cls(
            namespace=meta.namespace,
            name=meta.name,
            uid=meta.uid,
            resource_version=meta.resource_version,
            owner=owner.name if owner else None,
            labels=meta.labels,
            annotations=meta.annotations,
            spec=route.spec,
        )


class PluginInfo(BaseModel):
    name: str
    version: str


# Store errors surface as these HTTP statuses; anything else is a 500
STORE_ERROR_STATUS = {
    NotFoundError: 404,
    AlreadyExistsError: 409,
    ConflictError: 409,
}


class HTTPInputPlugin(InputPlugin):
    """FastAPI application served by uvicorn."""

    def __init__(self):
        self.app: Optional[FastAPI] = None
        self.host = "0.0.0.0"
        self.port = 8000
        self.server: Optional[uvicorn.Server] = None
        self._on_resource_event: Optional[ResourceCallback] = None
        self._db_manager = None
        self._event_bus: Optional[EventBus] = None

    @property
    def name(self) -> str:
        return "http"

    @property
    def version(self) -> str:
        return "1.0.0"

    @classmethod
    def load_config_from_env(cls) -> Dict[str, Any]:
        api = APIConfig.from_env()
        return {
            "host": api.host,
            "port": api.port,
            "cors_enabled": api.cors_enabled,
            "cors_origins": api.cors_origins,
        }

    async def initialize(self, config: Dict[str, Any]) -> None:
        self.host = config.get("host", self.host)
        self.port = config.get("port", self.port)

        self.app = FastAPI(
            title="Ingress Operator API",
            description="Declarative Ingresses realized as gateway Routes",
            version=self.version,
        )
        if config.get("cors_enabled"):
            self.app.add_middleware(
                CORSMiddleware,
                allow_origins=config.get("cors_origins") or ["*"],
                allow_methods=["*"],
                allow_headers=["*"],
            )
        self.app.add_exception_handler(StoreError, self._store_error_response)

        logger.info(f"HTTP input plugin configured for {self.host}:{self.port}")

    def set_db_manager(self, db_manager) -> None:
        self._db_manager = db_manager

    def set_event_bus(self, event_bus: EventBus) -> None:
        self._event_bus = event_bus

    @staticmethod
    async def _store_error_response(request: Request, exc: StoreError) -> JSONResponse:
        status_code = next(
            (code for cls, code in STORE_ERROR_STATUS.items() if isinstance(exc, cls)),
            500,
        )
        if status_code == 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    @property
    def store(self):
        if not self._db_manager:
            raise HTTPException(status_code=503, detail="Database not available")
        return self._db_manager

    @property
    def event_bus(self) -> EventBus:
        if not self._event_bus:
            raise HTTPException(status_code=503, detail="Event streaming not available")
        return self._event_bus

    async def _stream(self, bus: EventBus, filter_fn: Callable[[ObjectEvent], bool]):
        subscriber_id, subscription = await bus.subscribe(filter_fn)

        async def sse():
            try:
                async for event in subscription:
                    yield event.to_sse()
            finally:
                await bus.unsubscribe(subscriber_id)

        return StreamingResponse(
            sse(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    def _setup_routes(self) -> None:
        """
        Register the endpoints.

        - ``GET /``: liveness
        - ``/api/v1/namespaces/{namespace}/ingresses[/{name}]``: CRUD on specs
        - ``.../{name}/status``, ``.../{name}/routes``: what the controller did
        - ``POST .../{name}/reconcile``: reconcile now
        - ``/api/v1/events``, ``.../{name}/events``: SSE change streams
        - ``/api/v1/plugins/{translators,inputs}``: registered plugins
        """
        if not self.app:
            raise RuntimeError("App not initialized")
        app = self.app

        @app.get("/")
        async def health_check():
            return {"status": "ok", "service": "ingress-operator"}

        @app.post(INGRESSES, response_model=IngressResponse, status_code=201)
        async def create_ingress(namespace: str, body: IngressCreate):
            store = self.store
            validate_or_400(namespace, "namespace")
            ingress = Ingress(
                metadata=ObjectMeta(
                    name=body.name,
                    namespace=namespace,
                    labels=body.labels,
                    annotations=body.annotations,
                ),
                spec=body.spec,
            )
            return IngressResponse.from_ingress(await store.create_ingress(ingress))

        @app.get("/api/v1/ingresses", response_model=List[IngressResponse])
        async def list_all_ingresses(limit: int = 100):
            ingresses = await self.store.list_ingresses(limit=limit)
            return [IngressResponse.from_ingress(i) for i in ingresses]

        @app.get(INGRESSES, response_model=List[IngressResponse])
        async def list_ingresses(namespace: str, limit: int = 100):
            ingresses = await self.store.list_ingresses(namespace=namespace, limit=limit)
            return [IngressResponse.from_ingress(i) for i in ingresses]

        @app.get(INGRESS, response_model=IngressResponse)
        async def get_ingress(namespace: str, name: str):
            ingress = await self.store.get_ingress(namespace, name)
            return IngressResponse.from_ingress(ingress)

        @app.put(INGRESS, response_model=IngressResponse)
        async def update_ingress(namespace: str, name: str, update: IngressUpdate):
            updated = await self.store.update_ingress_spec(
                namespace,
                name,
                update.spec,
                labels=update.labels,
                annotations=update.annotations,
                resource_version=update.resource_version,
            )
            return IngressResponse.from_ingress(updated)

        @app.delete(INGRESS, status_code=204)
        async def delete_ingress(namespace: str, name: str):
            # Owned Routes go with it through the store's cascade
            await self.store.delete_ingress(namespace, name)

        @app.get(INGRESS + "/status")
        async def get_ingress_status(namespace: str, name: str):
            ingress = await self.store.get_ingress(namespace, name)
            return {
                "namespace": namespace,
                "name": name,
                "generation": ingress.metadata.generation,
                "ready": ingress.status.is_ready(),
                "status": ingress.status.to_dict(),
            }

        @app.get(INGRESS + "/routes", response_model=List[RouteResponse])
        async def list_ingress_routes(namespace: str, name: str):
            store = self.store
            ingress = await store.get_ingress(namespace, name)
            routes = await store.list_routes_for_owner(ingress.metadata.uid)
            return [RouteResponse.from_route(r) for r in routes]

        @app.post(INGRESS + "/reconcile", status_code=202)
        async def trigger_reconciliation(namespace: str, name: str):
            if not self._on_resource_event:
                raise HTTPException(status_code=503, detail="Controller not available")

            key = NamespacedName(namespace, name)
            await self._on_resource_event("reconcile", key)
            return {"message": "Reconciliation triggered", "key": str(key)}

        @app.get("/api/v1/plugins/translators", response_model=List[PluginInfo])
        async def list_translator_plugins():
            from plugins.registry import get_registry

            registry = get_registry()
            return [
                PluginInfo(**registry.get_translator_plugin_info(name))
                for name in registry.list_translator_plugins()
            ]

        @app.get("/api/v1/plugins/inputs", response_model=List[PluginInfo])
        async def list_input_plugins():
            from plugins.registry import get_registry

            registry = get_registry()
            return [
                PluginInfo(**registry.get_input_plugin_info(name))
                for name in registry.list_input_plugins()
            ]

        @app.get("/api/v1/events")
        async def stream_all_events(
            kind: Optional[str] = None, namespace: Optional[str] = None
        ):
            """Every object event, optionally narrowed by kind and namespace."""

            def matches(event: ObjectEvent) -> bool:
                return (not kind or event.kind == kind) and (
                    not namespace or event.namespace == namespace
                )

            return await self._stream(self.event_bus, matches)

        @app.get(INGRESS + "/events")
        async def stream_ingress_events(namespace: str, name: str):
            """Events for one Ingress and the Routes it owns."""
            bus = self.event_bus
            uid = (await self.store.get_ingress(namespace, name)).metadata.uid

            def matches(event: ObjectEvent) -> bool:
                return event.uid == uid or any(
                    ref.uid == uid for ref in event.owner_references
                )

            return await self._stream(bus, matches)

    async def start(self, on_resource_event: ResourceCallback) -> None:
        self._on_resource_event = on_resource_event
        self._setup_routes()

        self.server = uvicorn.Server(
            uvicorn.Config(self.app, host=self.host, port=self.port, log_level="info")
        )
        logger.info(f"Serving HTTP API on {self.host}:{self.port}")
        await self.server.serve()

    async def stop(self) -> None:
        if self.server:
            logger.info("Stopping HTTP API")
            self.server.should_exit = True

    async def health_check(self) -> tuple[bool, str]:
        if self.server and self.server.started:
            return True, "HTTP API is running"
        return False, "HTTP API is not running"
