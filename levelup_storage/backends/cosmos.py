"""
Cosmos DB storage backend for cloud-entitled users.

Implements the StorageBackend interface with Azure Cosmos DB as the
remote store. Also serves as the entitlement source: each user's plan
lives in a ``subscription`` document next to their records.

Single Container Architecture:
    All records share ONE container partitioned by /user_id, with a
    ``type`` discriminator per entity family. Every query is a
    single-partition query scoped to the authenticated user.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from azure.core.exceptions import AzureError
from azure.cosmos import PartitionKey
from azure.cosmos.aio import ContainerProxy, CosmosClient, DatabaseProxy
from azure.cosmos.exceptions import (
    CosmosHttpResponseError,
    CosmosResourceExistsError,
    CosmosResourceNotFoundError,
)

from ..exceptions import (
    AuthenticationError,
    RecordExistsError,
    RemoteStoreError,
    RemoteValidationError,
    StorageConnectionError,
    TransientRemoteError,
    ValidationError,
)
from .base import (
    RECORD_TYPES,
    EntityFamily,
    ExerciseLog,
    ListOptions,
    ProgressTracking,
    Record,
    StorageBackend,
    WorkoutSession,
)

logger = logging.getLogger(__name__)

CONTAINER_NAME = "levelup_data"
PARTITION_KEY_PATH = "/user_id"

DOC_TYPE_SUBSCRIPTION = "subscription"

# Auth methods
AUTH_KEY = "key"
AUTH_DEFAULT_CREDENTIAL = "default_credential"

# Status codes worth retrying later with the same payload
TRANSIENT_STATUS_CODES = {408, 429, 449}
VALIDATION_STATUS_CODES = {400, 413, 422}
AUTH_STATUS_CODES = {401, 403}

# Cosmos system properties and routing fields stripped before decoding
_DOCUMENT_ONLY_FIELDS = {"type", "user_id"}


def classify_cosmos_error(
    error: BaseException,
    operation: str,
    endpoint: str = "cosmos",
) -> RemoteStoreError:
    """Map a Cosmos / transport failure onto the remote error taxonomy.

    - 401/403: AuthenticationError (retry after re-authenticating)
    - 400/413/422: RemoteValidationError (payload will fail again)
    - no status, 408/429/449, 5xx, network errors, timeouts: TransientRemoteError
    - anything else: RemoteStoreError (not retryable)
    """
    if isinstance(error, CosmosHttpResponseError):
        status = error.status_code
        if status in AUTH_STATUS_CODES:
            return AuthenticationError(endpoint, str(error), status_code=status)
        if status in VALIDATION_STATUS_CODES:
            return RemoteValidationError(
                f"Remote store rejected {operation}: {error}",
                operation=operation,
                status_code=status,
                cause=error,
            )
        if not status or status in TRANSIENT_STATUS_CODES or status >= 500:
            return TransientRemoteError(
                f"Remote store unavailable during {operation}: {error}",
                operation=operation,
                status_code=status,
                cause=error,
            )
        return RemoteStoreError(
            f"Remote store error during {operation}: {error}",
            operation=operation,
            status_code=status,
            cause=error,
        )

    if isinstance(error, (AzureError, asyncio.TimeoutError, OSError)):
        # ServiceRequestError / ServiceResponseError: the request never completed
        return TransientRemoteError(
            f"Remote store unreachable during {operation}: {error}",
            operation=operation,
            cause=error if isinstance(error, Exception) else None,
        )

    return RemoteStoreError(
        f"Unexpected remote failure during {operation}: {error}",
        operation=operation,
        cause=error if isinstance(error, Exception) else None,
    )


_REMOTE_FAILURES = (AzureError, asyncio.TimeoutError, OSError)


def record_to_document(user_id: str, record: Record) -> dict[str, Any]:
    """Build the remote document for a record. The remote shape has no synced flag."""
    doc = record.to_dict()
    doc.pop("synced", None)
    doc["type"] = record.family.value
    doc["user_id"] = user_id
    if not doc.get("created_at"):
        doc["created_at"] = datetime.now(UTC).isoformat()
    return doc


def document_to_record(family: EntityFamily, doc: dict[str, Any]) -> Record:
    """Normalize a remote document back into the in-memory record shape.

    Records read back from the remote store report synced=True.
    """
    data = {
        k: v for k, v in doc.items() if k not in _DOCUMENT_ONLY_FIELDS and not k.startswith("_")
    }
    data["synced"] = True
    return RECORD_TYPES[family].from_dict(data)


@dataclass
class CosmosConfig:
    """Configuration for the Cosmos DB remote store."""

    endpoint: str
    database_name: str = "levelup-db"
    container_name: str = CONTAINER_NAME
    auth_method: str = AUTH_DEFAULT_CREDENTIAL
    key: str | None = None

    @classmethod
    def from_env(cls) -> CosmosConfig:
        """Create config from environment variables."""
        import os

        endpoint = os.environ.get("LEVELUP_COSMOS_ENDPOINT")
        database = os.environ.get("LEVELUP_COSMOS_DATABASE", "levelup-db")
        container = os.environ.get("LEVELUP_COSMOS_CONTAINER", CONTAINER_NAME)
        auth_method = os.environ.get("LEVELUP_COSMOS_AUTH_METHOD", AUTH_DEFAULT_CREDENTIAL)
        key = os.environ.get("LEVELUP_COSMOS_KEY")

        if not endpoint:
            raise AuthenticationError("cosmos", "LEVELUP_COSMOS_ENDPOINT not set")

        if auth_method == AUTH_KEY and not key:
            raise AuthenticationError("cosmos", "LEVELUP_COSMOS_KEY required for key auth")

        return cls(
            endpoint=endpoint,
            database_name=database,
            container_name=container,
            auth_method=auth_method,
            key=key,
        )


class CosmosBackend(StorageBackend):
    """
    Cosmos DB storage backend.

    Features:
    - Lazy connection: nothing touches the network until the first call
    - Inserts use create_item, so an id collision surfaces as RecordExistsError
      instead of silently overwriting
    - Failures classified as transient vs. validation for the caller
    """

    def __init__(self, config: CosmosConfig):
        self.config = config
        self._client: CosmosClient | None = None
        self._credential: Any = None
        self._database: DatabaseProxy | None = None
        self._container: ContainerProxy | None = None
        self._initialized = False

    @classmethod
    async def create(cls, config: CosmosConfig | None = None) -> CosmosBackend:
        """Create and initialize a Cosmos backend (config from env if None)."""
        if config is None:
            config = CosmosConfig.from_env()

        backend = cls(config)
        await backend.initialize()
        return backend

    async def initialize(self) -> None:
        """Initialize Cosmos connection and container."""
        await self._ensure_initialized()

    async def _ensure_initialized(self) -> ContainerProxy:
        if self._initialized and self._container is not None:
            return self._container

        try:
            if self.config.auth_method == AUTH_KEY:
                if not self.config.key:
                    raise AuthenticationError("cosmos", "Key required for key auth")
                self._client = CosmosClient(self.config.endpoint, credential=self.config.key)
            else:
                from azure.identity.aio import DefaultAzureCredential

                self._credential = DefaultAzureCredential()
                self._client = CosmosClient(self.config.endpoint, credential=self._credential)

            self._database = await self._client.create_database_if_not_exists(
                id=self.config.database_name
            )
            self._container = await self._database.create_container_if_not_exists(
                id=self.config.container_name,
                partition_key=PartitionKey(path=PARTITION_KEY_PATH),
                indexing_policy=self._get_indexing_policy(),
            )

            self._initialized = True
            logger.info(
                f"Cosmos backend initialized: {self.config.endpoint} "
                f"(database={self.config.database_name}, "
                f"container={self.config.container_name})"
            )
            return self._container

        except AuthenticationError:
            await self._reset()
            raise
        except _REMOTE_FAILURES as e:
            await self._reset()
            raise classify_cosmos_error(e, "initialize", self.config.endpoint) from e
        except Exception as e:
            await self._reset()
            raise StorageConnectionError(self.config.endpoint, e) from e

    def _get_indexing_policy(self) -> dict[str, Any]:
        """Index only the scalar fields that list queries filter and sort on."""
        return {
            "indexingMode": "consistent",
            "automatic": True,
            "includedPaths": [
                {"path": "/type/?"},
                {"path": "/user_id/?"},
                {"path": "/session_id/?"},
                {"path": "/metric_type/?"},
                {"path": "/session_date/?"},
                {"path": "/start_time/?"},
                {"path": "/record_date/?"},
                {"path": "/order_performed/?"},
                {"path": "/created_at/?"},
            ],
            "excludedPaths": [
                {"path": "/notes/?"},
                {"path": "/*"},
            ],
            "compositeIndexes": [
                [
                    {"path": "/session_date", "order": "descending"},
                    {"path": "/start_time", "order": "descending"},
                    {"path": "/created_at", "order": "descending"},
                ],
                [
                    {"path": "/record_date", "order": "descending"},
                    {"path": "/created_at", "order": "descending"},
                ],
            ],
        }

    async def _reset(self) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the Cosmos client and credential."""
        if self._client is not None:
            await self._client.close()
            self._client = None
        if self._credential is not None:
            await self._credential.close()
            self._credential = None
        self._database = None
        self._container = None
        self._initialized = False

    # =========================================================================
    # Generic Operations
    # =========================================================================

    async def _insert(self, user_id: str, record: Record) -> None:
        record.validate()
        container = await self._ensure_initialized()
        doc = record_to_document(user_id, record)
        try:
            await container.create_item(body=doc)
        except CosmosResourceExistsError as e:
            raise RecordExistsError(record.family.value, record.id) from e
        except _REMOTE_FAILURES as e:
            raise classify_cosmos_error(
                e, f"save {record.family.value}", self.config.endpoint
            ) from e

    async def _query(
        self,
        family: EntityFamily,
        user_id: str,
        query: str,
        parameters: list[dict[str, Any]],
    ) -> list[Record]:
        container = await self._ensure_initialized()
        records: list[Record] = []
        try:
            async for doc in container.query_items(
                query=query,
                parameters=parameters,
                partition_key=user_id,
            ):
                records.append(document_to_record(family, doc))
        except _REMOTE_FAILURES as e:
            raise classify_cosmos_error(
                e, f"list {family.value}", self.config.endpoint
            ) from e
        return records

    async def record_exists(self, user_id: str, family: EntityFamily, record_id: str) -> bool:
        """Check whether a record of this family is already stored remotely."""
        container = await self._ensure_initialized()
        try:
            doc = await container.read_item(item=record_id, partition_key=user_id)
        except CosmosResourceNotFoundError:
            return False
        except _REMOTE_FAILURES as e:
            raise classify_cosmos_error(e, "record_exists", self.config.endpoint) from e
        return doc.get("type") == family.value

    async def get_subscription_plan(self, user_id: str) -> str | None:
        """Read the user's plan tier from their subscription document.

        Returns None when the user has no subscription document. A
        subscription whose status is not active reports the free plan.
        """
        container = await self._ensure_initialized()
        try:
            doc = await container.read_item(
                item=f"{DOC_TYPE_SUBSCRIPTION}_{user_id}", partition_key=user_id
            )
        except CosmosResourceNotFoundError:
            return None
        except _REMOTE_FAILURES as e:
            raise classify_cosmos_error(e, "get_subscription", self.config.endpoint) from e

        status = doc.get("status", "active")
        if status != "active":
            logger.info(f"Subscription for {user_id} is {status}, treating as free")
            return "free"
        return doc.get("plan")

    # =========================================================================
    # Workout Sessions
    # =========================================================================

    async def save_workout_session(self, user_id: str, session: WorkoutSession) -> None:
        await self._insert(user_id, session)

    async def list_workout_sessions(
        self, user_id: str, options: ListOptions | None = None
    ) -> list[WorkoutSession]:
        family = EntityFamily.WORKOUT_SESSION
        options = options or ListOptions()
        options.validate_for(family)

        query = """
            SELECT * FROM c
            WHERE c.type = @type AND c.user_id = @user_id
            ORDER BY c.session_date DESC, c.start_time DESC, c.created_at DESC
            OFFSET 0 LIMIT @limit
        """
        params = [
            {"name": "@type", "value": family.value},
            {"name": "@user_id", "value": user_id},
            {"name": "@limit", "value": options.resolve_limit(family)},
        ]
        return await self._query(family, user_id, query, params)  # type: ignore[return-value]

    # =========================================================================
    # Exercise Logs
    # =========================================================================

    async def save_exercise_log(self, user_id: str, log: ExerciseLog) -> None:
        log.validate()
        await self._ensure_order_free(user_id, log)
        await self._insert(user_id, log)

    async def _ensure_order_free(self, user_id: str, log: ExerciseLog) -> None:
        """Reject a log whose order_performed is taken by another log in its session."""
        container = await self._ensure_initialized()
        query = """
            SELECT VALUE COUNT(1) FROM c
            WHERE c.type = @type AND c.session_id = @session_id
            AND c.order_performed = @order_performed AND c.id != @id
        """
        params = [
            {"name": "@type", "value": EntityFamily.EXERCISE_LOG.value},
            {"name": "@session_id", "value": log.session_id},
            {"name": "@order_performed", "value": log.order_performed},
            {"name": "@id", "value": log.id},
        ]
        taken = 0
        try:
            async for count in container.query_items(
                query=query, parameters=params, partition_key=user_id
            ):
                taken += count
        except _REMOTE_FAILURES as e:
            raise classify_cosmos_error(
                e, f"save {EntityFamily.EXERCISE_LOG.value}", self.config.endpoint
            ) from e
        if taken:
            raise ValidationError(
                "order_performed",
                "already used by another exercise in this session",
                str(log.order_performed),
            )

    async def list_exercise_logs(
        self, user_id: str, options: ListOptions | None = None
    ) -> list[ExerciseLog]:
        family = EntityFamily.EXERCISE_LOG
        options = options or ListOptions()
        options.validate_for(family)

        query = "SELECT * FROM c WHERE c.type = @type AND c.user_id = @user_id"
        params: list[dict[str, Any]] = [
            {"name": "@type", "value": family.value},
            {"name": "@user_id", "value": user_id},
        ]
        if options.session_id is not None:
            query += " AND c.session_id = @session_id ORDER BY c.order_performed ASC"
            params.append({"name": "@session_id", "value": options.session_id})
        else:
            query += " ORDER BY c.created_at DESC"
        query += " OFFSET 0 LIMIT @limit"
        params.append({"name": "@limit", "value": options.resolve_limit(family)})

        return await self._query(family, user_id, query, params)  # type: ignore[return-value]

    # =========================================================================
    # Progress Tracking
    # =========================================================================

    async def save_progress_tracking(self, user_id: str, progress: ProgressTracking) -> None:
        await self._insert(user_id, progress)

    async def list_progress_tracking(
        self, user_id: str, options: ListOptions | None = None
    ) -> list[ProgressTracking]:
        family = EntityFamily.PROGRESS_TRACKING
        options = options or ListOptions()
        options.validate_for(family)

        query = "SELECT * FROM c WHERE c.type = @type AND c.user_id = @user_id"
        params: list[dict[str, Any]] = [
            {"name": "@type", "value": family.value},
            {"name": "@user_id", "value": user_id},
        ]
        if options.metric_type is not None:
            query += " AND c.metric_type = @metric_type"
            params.append({"name": "@metric_type", "value": options.metric_type})
        query += " ORDER BY c.record_date DESC, c.created_at DESC OFFSET 0 LIMIT @limit"
        params.append({"name": "@limit", "value": options.resolve_limit(family)})

        return await self._query(family, user_id, query, params)  # type: ignore[return-value]
