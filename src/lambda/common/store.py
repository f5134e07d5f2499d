"""
Transactional store client for the single-table design.

Every record is addressed by (PK, SK). Three operations are exposed:
- get(pk, sk): point read, None when absent
- query(pk, begins_with, start_after, limit): sort-key ordered page of one partition
- atomic_write(ops): list of Put/Delete, each optionally conditioned on the
  item existing or not existing; all succeed or none do

A failed condition raises StoreConflict; anything else the backend reports
raises StoreUnavailable. DynamoStore talks to DynamoDB through boto3;
MemoryStore keeps the same contract in process memory for local runs and tests.
"""
import copy
import threading
import time
from dataclasses import dataclass, field

from botocore.exceptions import BotoCoreError, ClientError

from common import config


class StoreError(Exception):
    """Base class for store failures."""


class StoreConflict(StoreError):
    """A put/delete condition did not hold. index is the failing operation, when known."""

    def __init__(self, message, index=None):
        super().__init__(message)
        self.index = index


class StoreUnavailable(StoreError):
    """Backend error unrelated to conditions (throttling, network, missing table)."""


@dataclass(frozen=True)
class Condition:
    """Existence check on the target item.

    exists=False with or_equals=("status", "removed") passes when the item is
    absent or when its status attribute equals "removed".
    """
    exists: bool
    or_equals: tuple = None


MUST_EXIST = Condition(exists=True)
MUST_NOT_EXIST = Condition(exists=False)


@dataclass(frozen=True)
class Put:
    item: dict
    condition: Condition = None

    @property
    def key(self):
        return (self.item["PK"], self.item["SK"])


@dataclass(frozen=True)
class Delete:
    pk: str
    sk: str
    condition: Condition = None

    @property
    def key(self):
        return (self.pk, self.sk)


@dataclass
class QueryPage:
    items: list = field(default_factory=list)
    last_key: str = None

    @property
    def has_more(self):
        return self.last_key is not None


def _to_attr(value):
    """Python value -> DynamoDB attribute value."""
    if value is None:
        return {"NULL": True}
    if isinstance(value, bool):
        return {"BOOL": value}
    if isinstance(value, (int, float)):
        return {"N": str(value)}
    if isinstance(value, str):
        return {"S": value}
    if isinstance(value, (list, tuple)):
        return {"L": [_to_attr(v) for v in value]}
    if isinstance(value, dict):
        return {"M": {k: _to_attr(v) for k, v in value.items()}}
    raise TypeError(f"Unsupported attribute type: {type(value).__name__}")


def _from_attr(val):
    """DynamoDB attribute value -> Python value."""
    if "S" in val:
        return val["S"]
    if "N" in val:
        num_str = val["N"]
        return int(num_str) if "." not in num_str else float(num_str)
    if "BOOL" in val:
        return val["BOOL"]
    if "L" in val:
        return [_from_attr(v) for v in val["L"]]
    if "M" in val:
        return {k: _from_attr(v) for k, v in val["M"].items()}
    return None


def _dict_to_dynamo_item(data):
    """Plain dict -> DynamoDB item. None values are omitted rather than stored as NULL."""
    return {k: _to_attr(v) for k, v in data.items() if v is not None}


def _dynamo_item_to_dict(item):
    """Convert DynamoDB item format to plain dict."""
    return {k: _from_attr(v) for k, v in item.items()}


def _key(pk, sk):
    return {"PK": {"S": pk}, "SK": {"S": sk}}


def _condition_kwargs(condition):
    """ConditionExpression arguments for a transact item."""
    if condition is None:
        return {}
    expr = "attribute_exists(PK)" if condition.exists else "attribute_not_exists(PK)"
    kwargs = {}
    if condition.or_equals:
        attr, value = condition.or_equals
        expr = f"{expr} OR #cond0 = :cond0"
        kwargs["ExpressionAttributeNames"] = {"#cond0": attr}
        kwargs["ExpressionAttributeValues"] = {":cond0": _to_attr(value)}
    kwargs["ConditionExpression"] = expr
    return kwargs


class DynamoStore:
    """Store client backed by a DynamoDB table (low-level boto3 client)."""

    def __init__(self, table_name=None, client=None, region=None):
        self.table_name = table_name or config.TABLE_NAME
        self.region = region or config.AWS_REGION
        self._client = client

    @property
    def client(self):
        if self._client is None:
            import boto3
            self._client = boto3.client("dynamodb", region_name=self.region)
        return self._client

    def get(self, pk, sk):
        try:
            resp = self.client.get_item(
                TableName=self.table_name,
                Key=_key(pk, sk),
                ConsistentRead=True,
            )
        except (ClientError, BotoCoreError) as e:
            raise StoreUnavailable(f"get_item failed: {e}") from e
        if "Item" not in resp:
            return None
        return _dynamo_item_to_dict(resp["Item"])

    def query(self, pk, begins_with=None, start_after=None, limit=None):
        """One page of a partition in ascending sort-key order.

        start_after is the exclusive starting sort key (from a previous page or a cursor).
        """
        request_kw = {
            "TableName": self.table_name,
            "KeyConditionExpression": "PK = :pk",
            "ExpressionAttributeValues": {":pk": {"S": pk}},
            "ScanIndexForward": True,
        }
        if begins_with:
            request_kw["KeyConditionExpression"] = "PK = :pk AND begins_with(SK, :sk)"
            request_kw["ExpressionAttributeValues"][":sk"] = {"S": begins_with}
        if start_after:
            request_kw["ExclusiveStartKey"] = _key(pk, start_after)
        if limit:
            request_kw["Limit"] = limit
        try:
            result = self.client.query(**request_kw)
        except (ClientError, BotoCoreError) as e:
            raise StoreUnavailable(f"query failed: {e}") from e
        items = [_dynamo_item_to_dict(i) for i in result.get("Items", [])]
        last = result.get("LastEvaluatedKey")
        last_key = last.get("SK", {}).get("S") if last else None
        return QueryPage(items=items, last_key=last_key)

    def atomic_write(self, ops):
        """Apply all operations in one DynamoDB transaction."""
        if not ops:
            return
        transact_items = []
        for op in ops:
            if isinstance(op, Put):
                entry = {"TableName": self.table_name, "Item": _dict_to_dynamo_item(op.item)}
                entry.update(_condition_kwargs(op.condition))
                transact_items.append({"Put": entry})
            elif isinstance(op, Delete):
                entry = {"TableName": self.table_name, "Key": _key(op.pk, op.sk)}
                entry.update(_condition_kwargs(op.condition))
                transact_items.append({"Delete": entry})
            else:
                raise TypeError(f"Unsupported operation: {op!r}")
        try:
            self.client.transact_write_items(TransactItems=transact_items)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code == "TransactionCanceledException":
                reasons = e.response.get("CancellationReasons", [])
                for i, reason in enumerate(reasons):
                    if reason.get("Code") == "ConditionalCheckFailed":
                        raise StoreConflict("condition failed", index=i) from e
            elif code == "ConditionalCheckFailedException":
                raise StoreConflict("condition failed") from e
            raise StoreUnavailable(f"transact_write_items failed: {code or e}") from e
        except BotoCoreError as e:
            raise StoreUnavailable(f"transact_write_items failed: {e}") from e


class MemoryStore:
    """In-memory store with the DynamoStore contract.

    Sort keys are compared as Python strings, which matches DynamoDB's
    UTF-8 byte ordering. All data is lost on process exit.
    """

    def __init__(self):
        self._items = {}
        self._lock = threading.Lock()

    def get(self, pk, sk):
        with self._lock:
            item = self._items.get((pk, sk))
            return copy.deepcopy(item) if item is not None else None

    def query(self, pk, begins_with=None, start_after=None, limit=None):
        with self._lock:
            keys = sorted(sk for (p, sk) in self._items if p == pk)
            if begins_with:
                keys = [sk for sk in keys if sk.startswith(begins_with)]
            if start_after is not None:
                keys = [sk for sk in keys if sk > start_after]
            last_key = None
            if limit and len(keys) > limit:
                keys = keys[:limit]
                last_key = keys[-1]
            items = [copy.deepcopy(self._items[(pk, sk)]) for sk in keys]
        return QueryPage(items=items, last_key=last_key)

    def atomic_write(self, ops):
        with self._lock:
            seen = set()
            for i, op in enumerate(ops):
                if op.key in seen:
                    raise StoreUnavailable("multiple operations on one item in a transaction")
                seen.add(op.key)
                if not self._condition_holds(op.condition, self._items.get(op.key)):
                    raise StoreConflict("condition failed", index=i)
            for op in ops:
                if isinstance(op, Put):
                    self._items[op.key] = copy.deepcopy({k: v for k, v in op.item.items() if v is not None})
                else:
                    self._items.pop(op.key, None)

    def items(self, pk=None):
        """Snapshot of stored items, optionally for one partition."""
        with self._lock:
            return [copy.deepcopy(v) for (p, _), v in sorted(self._items.items()) if pk is None or p == pk]

    @staticmethod
    def _condition_holds(condition, current):
        if condition is None:
            return True
        exists = current is not None
        if exists == condition.exists:
            return True
        if condition.or_equals and exists:
            attr, value = condition.or_equals
            return current.get(attr) == value
        return False


def timed():
    """Start a duration measurement; call the result to get elapsed milliseconds."""
    start = time.monotonic()
    return lambda: int((time.monotonic() - start) * 1000)
