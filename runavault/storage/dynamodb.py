"""
DynamoDB Store — The passwords table on Amazon DynamoDB.

Table layout:
    partition key ``user_id`` (S), sort key ``site`` (S)
    GSI ``shared_with_groups-index`` on ``shared_with_groups``
    GSI ``shared_with_users-index`` on ``shared_with_users``

boto3 is synchronous; each call runs in a worker thread so the event loop
keeps serving other rows of the same fan-out.
"""
import asyncio
import logging
from typing import Any, Optional

import boto3
from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..codec import record_from_item, record_to_item
from ..config import VaultConfig
from ..exceptions import ConditionalPutFailed, StorageError
from ..models import DistributionRecord, normalize_subdirectory
from .base import RecordStore

logger = logging.getLogger("runavault")

_NOT_EXISTS = "attribute_not_exists(user_id) AND attribute_not_exists(site)"


class DynamoRecordStore(RecordStore):
    """RecordStore backed by a boto3 DynamoDB client."""

    def __init__(self, config: VaultConfig, client: Any = None):
        self._config = config
        self._table = config.table_name
        self._client = client or boto3.client(
            "dynamodb",
            region_name=config.region,
            config=Config(retries={"max_attempts": 3, "mode": "standard"}),
        )
        self._serializer = TypeSerializer()
        self._deserializer = TypeDeserializer()

    # ------------------------------------------------------------------
    # Marshalling
    # ------------------------------------------------------------------

    def _marshal(self, item: dict[str, Any]) -> dict[str, Any]:
        typed = {}
        for name, value in item.items():
            if name == "tags":
                # string set; never empty, the codec writes the sentinel
                value = set(value)
            typed[name] = self._serializer.serialize(value)
        return typed

    def _unmarshal(self, typed: dict[str, Any]) -> DistributionRecord:
        item = {name: self._deserializer.deserialize(value) for name, value in typed.items()}
        return record_from_item(item)

    async def _call(self, operation: str, **params: Any) -> dict[str, Any]:
        method = getattr(self._client, operation)
        try:
            return await asyncio.to_thread(method, **params)
        except ClientError as err:
            code = err.response.get("Error", {}).get("Code", "")
            if code == "ConditionalCheckFailedException":
                item = params.get("Item", {})
                raise ConditionalPutFailed(
                    item.get("user_id", {}).get("S", ""),
                    item.get("site", {}).get("S", ""),
                ) from err
            logger.error("DynamoDB %s failed: %s", operation, code or err)
            raise StorageError(f"DynamoDB {operation} failed: {code or err}") from err
        except BotoCoreError as err:
            logger.error("DynamoDB %s failed: %s", operation, err)
            raise StorageError(f"DynamoDB {operation} failed: {err}") from err

    async def _query(self, **params: Any) -> list[DistributionRecord]:
        params["TableName"] = self._table
        records: list[DistributionRecord] = []
        while True:
            resp = await self._call("query", **params)
            records.extend(self._unmarshal(item) for item in resp.get("Items", []))
            lek = resp.get("LastEvaluatedKey")
            if not lek:
                break
            params["ExclusiveStartKey"] = lek
        return records

    # ------------------------------------------------------------------
    # RecordStore
    # ------------------------------------------------------------------

    async def get(self, owner_id: str, sort_key: str) -> Optional[DistributionRecord]:
        resp = await self._call(
            "get_item",
            TableName=self._table,
            Key={"user_id": {"S": owner_id}, "site": {"S": sort_key}},
        )
        item = resp.get("Item")
        return self._unmarshal(item) if item else None

    async def put(self, record: DistributionRecord, replace: bool = False) -> None:
        params: dict[str, Any] = {
            "TableName": self._table,
            "Item": self._marshal(record_to_item(record)),
        }
        if not replace:
            params["ConditionExpression"] = _NOT_EXISTS
        await self._call("put_item", **params)

    async def delete(self, owner_id: str, sort_key: str) -> None:
        await self._call(
            "delete_item",
            TableName=self._table,
            Key={"user_id": {"S": owner_id}, "site": {"S": sort_key}},
        )

    async def query(
        self,
        owner_id: str,
        prefix: Optional[str] = None,
        exact: Optional[str] = None,
    ) -> list[DistributionRecord]:
        values: dict[str, Any] = {":user_id": {"S": owner_id}}
        condition = "user_id = :user_id"
        if exact is not None:
            condition += " AND site = :site"
            values[":site"] = {"S": exact}
        elif prefix is not None:
            condition += " AND begins_with(site, :site)"
            values[":site"] = {"S": prefix}
        return await self._query(
            KeyConditionExpression=condition,
            ExpressionAttributeValues=values,
        )

    async def query_by_group(
        self, group: str, subdirectory: Optional[str] = None,
    ) -> list[DistributionRecord]:
        params: dict[str, Any] = {
            "IndexName": self._config.group_index,
            "KeyConditionExpression": "shared_with_groups = :group_id",
            "ExpressionAttributeValues": {":group_id": {"S": group}},
        }
        if subdirectory is not None:
            params["FilterExpression"] = "subdirectory = :subdirectory"
            params["ExpressionAttributeValues"][":subdirectory"] = {
                "S": normalize_subdirectory(subdirectory),
            }
        return await self._query(**params)

    async def query_by_user(self, user_id: str) -> list[DistributionRecord]:
        return await self._query(
            IndexName=self._config.user_index,
            KeyConditionExpression="shared_with_users = :user_id",
            ExpressionAttributeValues={":user_id": {"S": user_id}},
        )
