"""DynamoDB storage client."""

from typing import Any, Dict, List, Optional, Tuple

import boto3
from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .clients import Item, PageResult, StorageClient
from .domain import ConflictError, NotFound, NotesError, TransientIOError, ValidationError
from .logs import get_logger

logger = get_logger(__name__)

TRANSIENT_CODES = {
    "ProvisionedThroughputExceededException",
    "ThrottlingException",
    "RequestLimitExceeded",
    "InternalServerError",
    "ServiceUnavailable",
    "TransactionConflictException",
}

SORT_EXPRESSIONS = {
    "eq": "#sk = :sk",
    "lt": "#sk < :sk",
    "lte": "#sk <= :sk",
    "gt": "#sk > :sk",
    "gte": "#sk >= :sk",
    "begins_with": "begins_with(#sk, :sk)",
    "between": "#sk BETWEEN :sk AND :sk_upper",
}


class DynamoClient(StorageClient):
    """
    Low-level boto3 DynamoDB client.

    Works with AWS, DynamoDB Local and localstack. Pages are cut by the
    service itself at 1 MB, so ``page_bytes`` is not used here. botocore's
    retry configuration is the only retrying that happens.
    """

    def __init__(
        self,
        region: str = "us-east-1",
        endpoint_url: Optional[str] = None,
        max_attempts: int = 3,
        client=None,
    ):
        if client is None:
            client_kwargs = {
                "service_name": "dynamodb",
                "region_name": region,
                "config": Config(retries={"max_attempts": max_attempts, "mode": "standard"}),
            }
            if endpoint_url:
                client_kwargs["endpoint_url"] = endpoint_url
            client = boto3.client(**client_kwargs)
        self.client = client
        self.serializer = TypeSerializer()
        self.deserializer = TypeDeserializer()

        logger.info("dynamodb_client_initialized", region=region, endpoint=endpoint_url)

    def _dump(self, item: Dict[str, Any]) -> Dict[str, Any]:
        try:
            return {name: self.serializer.serialize(value) for name, value in item.items()}
        except TypeError as e:
            raise ValidationError(f"Unsupported attribute value: {e}") from e

    def _load(self, item: Dict[str, Any]) -> Item:
        return {name: self.deserializer.deserialize(value) for name, value in item.items()}

    def _call(self, operation: str, **params) -> Dict[str, Any]:
        try:
            return getattr(self.client, operation)(**params)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            message = e.response.get("Error", {}).get("Message", str(e))
            if code == "ConditionalCheckFailedException":
                raise
            if code in TRANSIENT_CODES:
                logger.warning("storage_transient_error", backend="dynamodb", operation=operation, code=code)
                raise TransientIOError(f"DynamoDB {operation} failed: {code}") from e
            if code == "ValidationException":
                raise ValidationError(message) from e
            logger.error("storage_error", backend="dynamodb", operation=operation, code=code)
            raise NotesError(f"DynamoDB {operation} failed: {code}: {message}") from e
        except BotoCoreError as e:
            logger.warning("storage_transient_error", backend="dynamodb", operation=operation, error=str(e))
            raise TransientIOError(f"DynamoDB {operation} failed: {e}") from e

    @staticmethod
    def _is_conditional_failure(error: ClientError) -> bool:
        return error.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException"

    def get_item(self, table, schema, key):
        resp = self._call("get_item", TableName=table, Key=self._dump(key), ConsistentRead=True)
        item = resp.get("Item")
        return self._load(item) if item else None

    def put_item(self, table, schema, item, if_absent=False):
        params = {"TableName": table, "Item": self._dump(item), "ReturnValues": "ALL_OLD"}
        if if_absent:
            params["ConditionExpression"] = "attribute_not_exists(#pk)"
            params["ExpressionAttributeNames"] = {"#pk": schema.partition}
        try:
            resp = self._call("put_item", **params)
        except ClientError as e:
            if self._is_conditional_failure(e):
                raise ConflictError(f"Item already exists in {table}") from e
            raise
        previous = resp.get("Attributes")
        return self._load(previous) if previous else None

    def update_item(self, table, schema, key, patch):
        names = {"#pk": schema.partition}
        values = {}
        assignments = []
        for index, (name, value) in enumerate(self._dump(patch).items()):
            names[f"#f{index}"] = name
            values[f":f{index}"] = value
            assignments.append(f"#f{index} = :f{index}")
        try:
            resp = self._call(
                "update_item",
                TableName=table,
                Key=self._dump(key),
                UpdateExpression="SET " + ", ".join(assignments),
                ConditionExpression="attribute_exists(#pk)",
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
                ReturnValues="ALL_NEW",
            )
        except ClientError as e:
            if self._is_conditional_failure(e):
                raise NotFound(f"No item at {key} in {table}") from e
            raise
        return self._load(resp.get("Attributes", {}))

    def delete_item(self, table, schema, key):
        self._call("delete_item", TableName=table, Key=self._dump(key))

    def _page(self, operation: str, params: Dict[str, Any], start_key, limit) -> PageResult:
        if start_key is not None:
            params["ExclusiveStartKey"] = self._dump(start_key)
        if limit is not None:
            params["Limit"] = limit
        resp = self._call(operation, **params)
        items: List[Item] = [self._load(item) for item in resp.get("Items", [])]
        last = resp.get("LastEvaluatedKey")
        return items, self._load(last) if last else None

    def query(self, table, schema, condition, start_key=None, limit=None, page_bytes=1024 * 1024):
        names = {"#pk": schema.partition}
        values = {":pk": self.serializer.serialize(condition.partition)}
        expression = "#pk = :pk"
        if condition.sort is not None:
            names["#sk"] = schema.sort
            values[":sk"] = self.serializer.serialize(condition.sort.value)
            if condition.sort.op == "between":
                values[":sk_upper"] = self.serializer.serialize(condition.sort.upper)
            expression += " AND " + SORT_EXPRESSIONS[condition.sort.op]
        params = {
            "TableName": table,
            "KeyConditionExpression": expression,
            "ExpressionAttributeNames": names,
            "ExpressionAttributeValues": values,
            "ScanIndexForward": not condition.descending,
        }
        return self._page("query", params, start_key, limit)

    def scan(self, table, schema, filter=None, start_key=None, limit=None, page_bytes=1024 * 1024):
        params: Dict[str, Any] = {"TableName": table}
        if filter:
            names, values, terms = self._filter_expression(filter)
            params["FilterExpression"] = " AND ".join(terms)
            params["ExpressionAttributeNames"] = names
            params["ExpressionAttributeValues"] = values
        return self._page("scan", params, start_key, limit)

    def _filter_expression(self, filter) -> Tuple[Dict[str, str], Dict[str, Any], List[str]]:
        names, values, terms = {}, {}, []
        for index, (name, value) in enumerate(filter.items()):
            names[f"#a{index}"] = name
            values[f":a{index}"] = self.serializer.serialize(value)
            terms.append(f"#a{index} = :a{index}")
        return names, values, terms

    def close(self) -> None:
        self.client.close()
