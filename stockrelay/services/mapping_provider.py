# stockrelay/services/mapping_provider.py
"""
Read access to the mapping service's records: which downstream stores an
upstream store feeds, with what policy, and which variants are paired.

The engine never creates or edits mappings. InMemoryMappingProvider serves
records loaded from a JSON export (MAPPINGS_FILE) and is what tests use.
"""

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Protocol

from stockrelay.schemas.mapping import Connection, ConnectionPolicy, StoreCredentials, VariantMapping
from stockrelay.core.enums import MappingStatus

logger = logging.getLogger(__name__)


class MappingProvider(Protocol):
    async def get_connections(self, upstream_store_id: str) -> List[Connection]:
        ...

    async def get_connection(self, connection_id: str) -> Optional[Connection]:
        ...

    async def get_active_mappings(self, connection_id: str) -> List[VariantMapping]:
        ...

    async def get_connection_policy(self, connection_id: str) -> Optional[ConnectionPolicy]:
        ...

    async def get_store_credentials(self, store_id: str) -> Optional[StoreCredentials]:
        ...


class InMemoryMappingProvider:
    def __init__(
        self,
        connections: Optional[List[Connection]] = None,
        mappings: Optional[List[VariantMapping]] = None,
        credentials: Optional[List[StoreCredentials]] = None,
    ):
        self._connections: Dict[str, Connection] = {}
        self._mappings: Dict[str, List[VariantMapping]] = {}
        self._credentials: Dict[str, StoreCredentials] = {}
        for connection in connections or []:
            self.add_connection(connection)
        for mapping in mappings or []:
            self.add_mapping(mapping)
        for creds in credentials or []:
            self.add_credentials(creds)

    @classmethod
    def from_dict(cls, data: Dict) -> "InMemoryMappingProvider":
        return cls(
            connections=[Connection.model_validate(c) for c in data.get("connections", [])],
            mappings=[VariantMapping.model_validate(m) for m in data.get("mappings", [])],
            credentials=[StoreCredentials.model_validate(s) for s in data.get("stores", [])],
        )

    @classmethod
    def from_file(cls, path: str) -> "InMemoryMappingProvider":
        with Path(path).open("r", encoding="utf-8") as f:
            data = json.load(f)
        provider = cls.from_dict(data)
        logger.info(
            f"Loaded {len(provider._connections)} connections and "
            f"{sum(len(m) for m in provider._mappings.values())} variant mappings from {path}"
        )
        return provider

    def add_connection(self, connection: Connection):
        self._connections[connection.id] = connection

    def add_mapping(self, mapping: VariantMapping):
        self._mappings.setdefault(mapping.connection_id, []).append(mapping)

    def add_credentials(self, credentials: StoreCredentials):
        self._credentials[credentials.store_id] = credentials

    def remove_store(self, store_id: str):
        self._credentials.pop(store_id, None)

    def update_policy(self, connection_id: str, **changes) -> Optional[Connection]:
        connection = self._connections.get(connection_id)
        if connection is None:
            return None
        policy = connection.policy.model_copy(update=changes)
        updated = connection.model_copy(update={"policy": policy})
        self._connections[connection_id] = updated
        return updated

    async def get_connections(self, upstream_store_id: str) -> List[Connection]:
        return [c for c in self._connections.values() if c.upstream_store_id == upstream_store_id]

    async def get_connection(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    async def get_active_mappings(self, connection_id: str) -> List[VariantMapping]:
        return [m for m in self._mappings.get(connection_id, []) if m.status == MappingStatus.ACTIVE]

    async def get_connection_policy(self, connection_id: str) -> Optional[ConnectionPolicy]:
        connection = self._connections.get(connection_id)
        return connection.policy if connection else None

    async def get_store_credentials(self, store_id: str) -> Optional[StoreCredentials]:
        return self._credentials.get(store_id)
