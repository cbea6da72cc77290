"""
Typed asynchronous CRUD over a logical table.

A ResourceStore resolves its physical table name from the application
namespace and deployment environment once, at construction, so a store built
for ``staging`` can never read or write ``production`` items. Every operation
runs the synchronous storage client in a worker thread; those awaits are the
only suspension points.

The store does not retry. Errors from the client (NotFound, ValidationError,
ConflictError, TransientIOError) reach the caller unchanged.
"""

import asyncio
import base64
import binascii
import json
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple

from .config import StoreConfig
from .domain import NotFound, ValidationError
from .keys import KeyCondition, KeySchema
from .logs import get_logger

logger = get_logger(__name__)

Item = Dict[str, Any]
Fetch = Callable[[Optional[Dict[str, str]]], Awaitable[Tuple[List[Item], Optional[Dict[str, str]]]]]


def encode_token(key: Mapping[str, str]) -> str:
    """Turn a last-read key into an opaque, URL-safe continuation token."""
    raw = json.dumps(dict(key), sort_keys=True, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_token(token: str, schema: KeySchema) -> Dict[str, str]:
    """Inverse of encode_token; the decoded key must fit ``schema``."""
    if not isinstance(token, str) or not token:
        raise ValidationError("Continuation token must be a non-empty string")
    try:
        raw = base64.urlsafe_b64decode(token + "=" * (-len(token) % 4))
        key = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        raise ValidationError(f"Malformed continuation token: {token!r}") from e
    return schema.validate_key(key)


@dataclass
class Page:
    items: List[Item]
    next_token: Optional[str] = None


@dataclass
class WriteResult:
    """Outcome of put/update: the key, the item as stored, and whether it existed before."""

    key: Dict[str, str]
    item: Item
    replaced: bool = False


class ItemPager:
    """
    Lazy, restartable sequence of items spread over pages.

    Nothing is fetched until the pager is iterated. Each fetch returns one
    page; the pager keeps following continuation keys until the backend
    reports none. ``next_token`` after any page can be handed to a new
    query/scan as ``start_token`` to resume from the same point.

    Usage:
        async for item in store.scan():
            ...
        async for page in store.query(KeyCondition("a1")).pages():
            print(len(page.items), page.next_token)
    """

    def __init__(self, fetch: Fetch, schema: KeySchema, start_token: Optional[str] = None):
        self._fetch = fetch
        self._schema = schema
        self._start_key = decode_token(start_token, schema) if start_token is not None else None
        self._exhausted = False
        self.next_token: Optional[str] = start_token
        self.pages_read = 0

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    async def next_page(self) -> Optional[Page]:
        """Fetch the next page, or return None once the sequence is finished."""
        if self._exhausted:
            return None
        items, last_key = await self._fetch(self._start_key)
        self.pages_read += 1
        self._start_key = last_key
        if last_key is None:
            self._exhausted = True
            self.next_token = None
        else:
            self.next_token = encode_token(last_key)
        return Page(items=items, next_token=self.next_token)

    async def pages(self) -> AsyncIterator[Page]:
        while True:
            page = await self.next_page()
            if page is None:
                return
            yield page

    async def __aiter__(self) -> AsyncIterator[Item]:
        async for page in self.pages():
            for item in page.items:
                yield item

    async def all(self) -> List[Item]:
        """Drain every remaining page into a list."""
        return [item async for item in self]


class ResourceStore:
    """
    CRUD over one logical table.

    Attributes:
        name (str): Logical table name, e.g. "notes"
        table (str): Physical name, "{namespace}-{environment}-{name}"
        schema (KeySchema): Primary-key attribute names
        client (StorageClient): Backend the operations are delegated to
    """

    def __init__(self, config: StoreConfig, name: str, schema: KeySchema):
        self.config = config
        self.name = name
        self.schema = schema
        self.client = config.client
        self.table = config.physical_name(name)

    def __repr__(self) -> str:
        return f"ResourceStore({self.table!r})"

    async def _run(self, func, *args, **kwargs):
        return await asyncio.to_thread(func, *args, **kwargs)

    async def get(self, key: Mapping[str, str]) -> Item:
        """
        Fetch the item at ``key``.

        Raises:
            ValidationError: if the key does not match the schema
            NotFound: if no item has that full primary key
        """
        key = self.schema.validate_key(key)
        item = await self._run(self.client.get_item, self.table, self.schema, key)
        if item is None:
            raise NotFound(f"No item {key} in {self.name}")
        return item

    def query(
        self,
        condition: KeyCondition,
        start_token: Optional[str] = None,
        page_size: Optional[int] = None,
    ) -> ItemPager:
        """
        Items of one partition, in sort-key order (reversed if ``descending``).

        Args:
            condition: partition value plus optional sort-key condition
            start_token: ``next_token`` of a previous page to resume after
            page_size: cap on items read per page, on top of the byte budget

        Returns:
            ItemPager: lazy sequence; no I/O until iterated
        """
        if not isinstance(condition, KeyCondition):
            raise ValidationError("query needs a KeyCondition")
        if condition.sort is not None and self.schema.sort is None:
            raise ValidationError(f"{self.name} has no sort key to filter on")
        self._check_page_size(page_size)
        if start_token is not None:
            start_key = decode_token(start_token, self.schema)
            if start_key[self.schema.partition] != condition.partition:
                raise ValidationError("Continuation token belongs to another partition")

        async def fetch(start_key):
            return await self._run(
                self.client.query,
                self.table,
                self.schema,
                condition,
                start_key=start_key,
                limit=page_size,
                page_bytes=self.config.page_bytes,
            )

        return ItemPager(fetch, self.schema, start_token)

    def scan(
        self,
        filter: Optional[Mapping[str, Any]] = None,
        start_token: Optional[str] = None,
        page_size: Optional[int] = None,
    ) -> ItemPager:
        """
        Every item in the table, optionally narrowed by attribute equality.

        Pages are cut at ``config.page_bytes``. The filter is applied after a
        page is read, so some pages may come back empty; keep following
        ``next_token`` until the pager is exhausted.
        """
        if filter is not None and not isinstance(filter, Mapping):
            raise ValidationError("scan filter must be a mapping of attribute to value")
        self._check_page_size(page_size)
        filter = dict(filter) if filter else None

        async def fetch(start_key):
            return await self._run(
                self.client.scan,
                self.table,
                self.schema,
                filter,
                start_key=start_key,
                limit=page_size,
                page_bytes=self.config.page_bytes,
            )

        return ItemPager(fetch, self.schema, start_token)

    async def put(self, item: Mapping[str, Any], if_absent: bool = False) -> WriteResult:
        """
        Store ``item``, fully replacing whatever is at its key (last writer wins).

        Args:
            item: must contain the key attributes
            if_absent: fail with ConflictError instead of replacing

        Returns:
            WriteResult: with ``replaced`` telling whether an item existed before
        """
        key = self.schema.key_of(item)
        item = dict(item)
        previous = await self._run(self.client.put_item, self.table, self.schema, item, if_absent)
        logger.debug("item_written", table=self.table, key=key, replaced=previous is not None)
        return WriteResult(key=key, item=item, replaced=previous is not None)

    async def update(self, key: Mapping[str, str], patch: Mapping[str, Any]) -> WriteResult:
        """
        Overwrite the attributes in ``patch``; leave every other attribute alone.

        Raises:
            ValidationError: empty patch, or a patch touching a key attribute
            NotFound: no item at ``key`` (update never creates)
        """
        key = self.schema.validate_key(key)
        if not isinstance(patch, Mapping) or not patch:
            raise ValidationError("update needs a non-empty patch")
        touched = [name for name in self.schema.attributes if name in patch]
        if touched:
            raise ValidationError(f"Key attributes {touched} cannot be updated")
        item = await self._run(self.client.update_item, self.table, self.schema, key, dict(patch))
        logger.debug("item_updated", table=self.table, key=key, fields=sorted(patch))
        return WriteResult(key=key, item=item, replaced=True)

    async def delete(self, key: Mapping[str, str]) -> None:
        """Remove the item at ``key``; a missing item is not an error."""
        key = self.schema.validate_key(key)
        await self._run(self.client.delete_item, self.table, self.schema, key)
        logger.debug("item_deleted", table=self.table, key=key)

    @staticmethod
    def _check_page_size(page_size: Optional[int]) -> None:
        if page_size is not None and (isinstance(page_size, bool) or not isinstance(page_size, int) or page_size < 1):
            raise ValidationError("page_size must be a positive integer")
