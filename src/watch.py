"""
Watch handlers - map object events to reconcile keys.

The controller registers one handler per watched kind. The primary kind maps
an event to its own key; owned kinds map an event to the key of their
controlling owner.
"""

from abc import ABC, abstractmethod
from typing import List

from events import ObjectEvent
from objects import NamespacedName


class EventHandler(ABC):
    """Turns an object event into zero or more reconcile keys."""

    @abstractmethod
    def map(self, event: ObjectEvent) -> List[NamespacedName]:
        pass


class EnqueueRequestForObject(EventHandler):
    """Enqueue the key of the object the event is about."""

    def map(self, event: ObjectEvent) -> List[NamespacedName]:
        return [event.key]


class EnqueueRequestForOwner(EventHandler):
    """
    Enqueue the key of the object's owner of the given kind.

    Owners live in the same namespace as the objects they own. With
    ``is_controller`` set only the controlling owner reference is followed.
    """

    def __init__(self, owner_kind: str, is_controller: bool = True):
        self.owner_kind = owner_kind
        self.is_controller = is_controller

    def map(self, event: ObjectEvent) -> List[NamespacedName]:
        keys = []
        for ref in event.owner_references:
            if ref.kind != self.owner_kind:
                continue
            if self.is_controller and not ref.controller:
                continue
            keys.append(NamespacedName(event.namespace, ref.name))
        return keys
