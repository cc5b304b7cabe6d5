"""
DynamoDB-based session store implementation.

Table layout:
- HASH key ``session_key`` (S)
- ``session_value`` (S), the serialized payload
- ``session_expiry`` (N), projected into the ``session_expiry-index``
  global secondary index for expired-session lookups
"""

import contextlib
import logging
from typing import Any, AsyncIterator, Optional

import aiobotocore.session
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, WaiterError

from errors.exceptions import BackendError, ProvisioningError
from resilience.waiter import WaiterConfig
from session.record import SessionRecord, coerce_expiry, validate_record
from session.store import SessionStore

logger = logging.getLogger(__name__)

EXPIRY_INDEX_NAME = "session_expiry-index"

# Table and index throughput used when the table has to be created
TABLE_THROUGHPUT = {"ReadCapacityUnits": 10, "WriteCapacityUnits": 10}
INDEX_THROUGHPUT = {"ReadCapacityUnits": 5, "WriteCapacityUnits": 5}

# Store calls are single-attempt; retries are the caller's business
CLIENT_CONFIG = Config(retries={"max_attempts": 1, "mode": "standard"})


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


class DynamoDBSessionStore(SessionStore):
    """
    DynamoDB-backed session store implementation.
    
    Attributes:
        table_name: Name of the session table
        region: AWS region of the table
        endpoint_url: Optional endpoint override (local DynamoDB)
        waiter_config: Bounds for the table_exists wait in ensure_table
        client: aiobotocore DynamoDB client (initialized via connect())
    """
    
    def __init__(
        self,
        table_name: str,
        region: str = "us-east-1",
        endpoint_url: Optional[str] = None,
        aws_access_key_id: Optional[str] = None,
        aws_secret_access_key: Optional[str] = None,
        waiter_config: Optional[WaiterConfig] = None,
        client: Any = None
    ):
        """
        Initialize the DynamoDB session store.
        
        Credentials are optional; without them the default AWS credential
        chain (environment, profile, instance role) is used.
        
        Args:
            table_name: Name of the session table
            region: AWS region
            endpoint_url: Optional endpoint override
            aws_access_key_id: Optional explicit access key
            aws_secret_access_key: Optional explicit secret key
            waiter_config: Readiness wait bounds (default 5s x 20 attempts)
            client: Pre-built client, mainly for tests
        """
        self.table_name = table_name
        self.region = region
        self.endpoint_url = endpoint_url
        self.waiter_config = waiter_config or WaiterConfig()
        self._credentials = {}
        if aws_access_key_id and aws_secret_access_key:
            self._credentials = {
                "aws_access_key_id": aws_access_key_id,
                "aws_secret_access_key": aws_secret_access_key,
            }
        self._session = aiobotocore.session.get_session()
        self._exit_stack: Optional[contextlib.AsyncExitStack] = None
        self.client = client
    
    async def connect(self) -> None:
        """Open the aiobotocore DynamoDB client."""
        if self.client is not None:
            return
        
        self._exit_stack = contextlib.AsyncExitStack()
        self.client = await self._exit_stack.enter_async_context(
            self._session.create_client(
                "dynamodb",
                region_name=self.region,
                endpoint_url=self.endpoint_url,
                config=CLIENT_CONFIG,
                **self._credentials
            )
        )
        logger.info(
            "DynamoDB client initialized",
            extra={"extra_data": {"region": self.region, "table": self.table_name}}
        )
    
    async def disconnect(self) -> None:
        """Close the client if this store opened it."""
        if self._exit_stack is not None:
            await self._exit_stack.aclose()
            self._exit_stack = None
            self.client = None
    
    def _require_client(self) -> Any:
        if self.client is None:
            raise RuntimeError("DynamoDB client not connected. Call connect() first.")
        return self.client
    
    def _key(self, session_key: str) -> dict[str, Any]:
        return {"session_key": {"S": str(session_key)}}
    
    async def ensure_table(self) -> None:
        client = self._require_client()
        try:
            await client.describe_table(TableName=self.table_name)
        except ClientError as e:
            if _error_code(e) != "ResourceNotFoundException":
                raise ProvisioningError(
                    f"Could not describe table {self.table_name}: {e}",
                    details={"table": self.table_name, "cause": _error_code(e)}
                ) from e
            await self._create_table(client)
        except BotoCoreError as e:
            raise ProvisioningError(
                f"Could not describe table {self.table_name}: {e}",
                details={"table": self.table_name, "cause": type(e).__name__}
            ) from e
        
        await self._wait_until_active(client)
    
    async def _create_table(self, client: Any) -> None:
        logger.info("Creating session table", extra={"extra_data": {"table": self.table_name}})
        try:
            await client.create_table(
                TableName=self.table_name,
                KeySchema=[
                    {"AttributeName": "session_key", "KeyType": "HASH"},
                ],
                AttributeDefinitions=[
                    {"AttributeName": "session_key", "AttributeType": "S"},
                    {"AttributeName": "session_expiry", "AttributeType": "N"},
                ],
                GlobalSecondaryIndexes=[
                    {
                        "IndexName": EXPIRY_INDEX_NAME,
                        "KeySchema": [
                            {"AttributeName": "session_expiry", "KeyType": "HASH"},
                        ],
                        "Projection": {"ProjectionType": "KEYS_ONLY"},
                        "ProvisionedThroughput": INDEX_THROUGHPUT,
                    },
                ],
                ProvisionedThroughput=TABLE_THROUGHPUT,
            )
        except ClientError as e:
            # another process won the race to create it
            if _error_code(e) == "ResourceInUseException":
                return
            raise ProvisioningError(
                f"Could not create table {self.table_name}: {e}",
                details={"table": self.table_name, "cause": _error_code(e)}
            ) from e
        except BotoCoreError as e:
            raise ProvisioningError(
                f"Could not create table {self.table_name}: {e}",
                details={"table": self.table_name, "cause": type(e).__name__}
            ) from e
    
    async def _wait_until_active(self, client: Any) -> None:
        waiter = client.get_waiter("table_exists")
        try:
            await waiter.wait(
                TableName=self.table_name,
                WaiterConfig={
                    "Delay": self.waiter_config.delay,
                    "MaxAttempts": self.waiter_config.max_attempts,
                },
            )
        except (WaiterError, ClientError, BotoCoreError) as e:
            raise ProvisioningError(
                f"Table {self.table_name} did not become ready",
                details={
                    "table": self.table_name,
                    "max_attempts": self.waiter_config.max_attempts,
                    "cause": type(e).__name__,
                }
            ) from e
        logger.info("Session table ready", extra={"extra_data": {"table": self.table_name}})
    
    async def get(self, session_key: str) -> Optional[SessionRecord]:
        client = self._require_client()
        try:
            result = await client.get_item(
                TableName=self.table_name,
                Key=self._key(session_key),
                ConsistentRead=True,
            )
        except (ClientError, BotoCoreError) as e:
            raise BackendError.from_exception("get", e, session_key) from e
        
        item = result.get("Item")
        if not item:
            return None
        
        value = item.get("session_value", {}).get("S", "")
        expiry_attr = item.get("session_expiry") or {}
        # a numeric attribute arrives as "N"; anything else is corrupt data
        raw_expiry = expiry_attr.get("N", expiry_attr.get("S"))
        return SessionRecord(
            session_key=session_key,
            session_value=value,
            session_expiry=coerce_expiry(raw_expiry),
        )
    
    async def put(self, record: SessionRecord) -> None:
        validate_record(record)
        client = self._require_client()
        try:
            await client.put_item(
                TableName=self.table_name,
                Item={
                    "session_key": {"S": str(record.session_key)},
                    "session_value": {"S": record.session_value},
                    "session_expiry": {"N": str(record.session_expiry)},
                },
            )
        except (ClientError, BotoCoreError) as e:
            raise BackendError.from_exception("put", e, record.session_key) from e
    
    async def delete(self, session_key: str) -> None:
        client = self._require_client()
        try:
            await client.delete_item(TableName=self.table_name, Key=self._key(session_key))
        except (ClientError, BotoCoreError) as e:
            raise BackendError.from_exception("delete", e, session_key) from e
    
    async def scan_expired(self, now: int) -> AsyncIterator[str]:
        client = self._require_client()
        paginator = client.get_paginator("scan")
        pages = paginator.paginate(
            TableName=self.table_name,
            FilterExpression="session_expiry < :current_time",
            ExpressionAttributeValues={":current_time": {"N": str(int(now))}},
            ProjectionExpression="session_key",
        )
        try:
            async for page in pages:
                for item in page.get("Items", []):
                    yield item["session_key"]["S"]
        except (ClientError, BotoCoreError) as e:
            raise BackendError.from_exception("scan_expired", e) from e
    
    async def update_expiry(self, session_key: str, expiry: int) -> bool:
        client = self._require_client()
        try:
            await client.update_item(
                TableName=self.table_name,
                Key=self._key(session_key),
                UpdateExpression="SET session_expiry = :expiry",
                ConditionExpression="attribute_exists(session_key)",
                ExpressionAttributeValues={":expiry": {"N": str(expiry)}},
            )
        except ClientError as e:
            if _error_code(e) == "ConditionalCheckFailedException":
                return False
            raise BackendError.from_exception("update_expiry", e, session_key) from e
        except BotoCoreError as e:
            raise BackendError.from_exception("update_expiry", e, session_key) from e
        return True
    
    async def health_check(self) -> bool:
        if self.client is None:
            return False
        
        try:
            result = await self.client.describe_table(TableName=self.table_name)
            return result.get("Table", {}).get("TableStatus") == "ACTIVE"
        except Exception:
            return False
