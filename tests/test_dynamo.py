"""Tests for the DynamoDB client against a stubbed botocore client."""

import boto3
import pytest
from botocore.stub import Stubber

from notes_site.backend.domain import ConflictError, NotesError, NotFound, TransientIOError, ValidationError
from notes_site.backend.dynamo import DynamoClient
from notes_site.backend.keys import KeyCondition, SortCondition
from notes_site.backend.services import NOTES_SCHEMA

TABLE = "notes-site-testing-notes"
KEY = {"accountID": "a1", "noteID": "n1"}
TYPED_KEY = {"accountID": {"S": "a1"}, "noteID": {"S": "n1"}}


@pytest.fixture
def boto_client():
    return boto3.client(
        "dynamodb",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


@pytest.fixture
def stubber(boto_client):
    with Stubber(boto_client) as stub:
        yield stub
        stub.assert_no_pending_responses()


@pytest.fixture
def dynamo(boto_client, stubber):
    return DynamoClient(client=boto_client)


def test_get_item_deserializes(dynamo, stubber):
    stubber.add_response(
        "get_item",
        {"Item": {**TYPED_KEY, "title": {"S": "T"}, "body": {"S": "B"}}},
        {"TableName": TABLE, "Key": TYPED_KEY, "ConsistentRead": True},
    )
    assert dynamo.get_item(TABLE, NOTES_SCHEMA, KEY) == {**KEY, "title": "T", "body": "B"}


def test_get_item_missing(dynamo, stubber):
    stubber.add_response("get_item", {}, {"TableName": TABLE, "Key": TYPED_KEY, "ConsistentRead": True})
    assert dynamo.get_item(TABLE, NOTES_SCHEMA, KEY) is None


def test_put_item_returns_previous(dynamo, stubber):
    stubber.add_response(
        "put_item",
        {"Attributes": {**TYPED_KEY, "title": {"S": "Old"}}},
        {"TableName": TABLE, "Item": {**TYPED_KEY, "title": {"S": "New"}}, "ReturnValues": "ALL_OLD"},
    )
    assert dynamo.put_item(TABLE, NOTES_SCHEMA, {**KEY, "title": "New"}) == {**KEY, "title": "Old"}


def test_put_if_absent_conflict(dynamo, stubber):
    stubber.add_client_error(
        "put_item",
        service_error_code="ConditionalCheckFailedException",
        expected_params={
            "TableName": TABLE,
            "Item": TYPED_KEY,
            "ReturnValues": "ALL_OLD",
            "ConditionExpression": "attribute_not_exists(#pk)",
            "ExpressionAttributeNames": {"#pk": "accountID"},
        },
    )
    with pytest.raises(ConflictError):
        dynamo.put_item(TABLE, NOTES_SCHEMA, dict(KEY), if_absent=True)


def test_update_item_requires_existing(dynamo, stubber):
    stubber.add_client_error("update_item", service_error_code="ConditionalCheckFailedException")
    with pytest.raises(NotFound):
        dynamo.update_item(TABLE, NOTES_SCHEMA, KEY, {"title": "x"})


def test_update_item_sets_patched_fields(dynamo, stubber):
    stubber.add_response(
        "update_item",
        {"Attributes": {**TYPED_KEY, "title": {"S": "x"}, "body": {"S": "kept"}}},
        {
            "TableName": TABLE,
            "Key": TYPED_KEY,
            "UpdateExpression": "SET #f0 = :f0",
            "ConditionExpression": "attribute_exists(#pk)",
            "ExpressionAttributeNames": {"#pk": "accountID", "#f0": "title"},
            "ExpressionAttributeValues": {":f0": {"S": "x"}},
            "ReturnValues": "ALL_NEW",
        },
    )
    assert dynamo.update_item(TABLE, NOTES_SCHEMA, KEY, {"title": "x"}) == {**KEY, "title": "x", "body": "kept"}


def test_query_builds_key_condition_and_returns_last_key(dynamo, stubber):
    stubber.add_response(
        "query",
        {
            "Items": [{**TYPED_KEY, "title": {"S": "T"}}],
            "LastEvaluatedKey": TYPED_KEY,
        },
        {
            "TableName": TABLE,
            "KeyConditionExpression": "#pk = :pk AND begins_with(#sk, :sk)",
            "ExpressionAttributeNames": {"#pk": "accountID", "#sk": "noteID"},
            "ExpressionAttributeValues": {":pk": {"S": "a1"}, ":sk": {"S": "n"}},
            "ScanIndexForward": False,
            "Limit": 1,
        },
    )
    condition = KeyCondition("a1", SortCondition.begins_with("n"), descending=True)

    items, last = dynamo.query(TABLE, NOTES_SCHEMA, condition, limit=1)

    assert items == [{**KEY, "title": "T"}]
    assert last == KEY


def test_scan_filter_and_start_key(dynamo, stubber):
    stubber.add_response(
        "scan",
        {"Items": []},
        {
            "TableName": TABLE,
            "FilterExpression": "#a0 = :a0",
            "ExpressionAttributeNames": {"#a0": "title"},
            "ExpressionAttributeValues": {":a0": {"S": "T"}},
            "ExclusiveStartKey": TYPED_KEY,
        },
    )
    assert dynamo.scan(TABLE, NOTES_SCHEMA, {"title": "T"}, start_key=KEY) == ([], None)


@pytest.mark.parametrize(
    "code, expected",
    [
        ("ProvisionedThroughputExceededException", TransientIOError),
        ("ThrottlingException", TransientIOError),
        ("ValidationException", ValidationError),
        ("ResourceNotFoundException", NotesError),
    ],
)
def test_error_translation(dynamo, stubber, code, expected):
    stubber.add_client_error("delete_item", service_error_code=code)
    with pytest.raises(expected):
        dynamo.delete_item(TABLE, NOTES_SCHEMA, KEY)


def test_unsupported_values_are_validation_errors(dynamo):
    with pytest.raises(ValidationError):
        dynamo.put_item(TABLE, NOTES_SCHEMA, {**KEY, "score": 1.5})
    with pytest.raises(ValidationError):
        dynamo.update_item(TABLE, NOTES_SCHEMA, KEY, {"score": 1.5})
