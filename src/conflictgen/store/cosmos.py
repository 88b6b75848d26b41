"""
Cosmos DB REST Store Handle
Pattern: Regional write endpoint over the SQL REST API, async version using httpx

Each handle discovers the account's writable locations and pins itself to
the endpoint of its preferred region, so writes issued through different
handles land in different regions and race each other.
"""

import base64
import hashlib
import hmac
import json
import os
import urllib.parse
from email.utils import formatdate
from typing import Optional, List, Dict, Any
import logging

import httpx

from ..errors import StoreError, StoreStatus, SetupError
from ..models import CollectionRef, CollectionSpec, ConflictRecord, Record
from .base import StoreHandle, RecordPredicate

logger = logging.getLogger(__name__)

API_VERSION = "2018-12-31"


def _normalize_region(name: str) -> str:
    return name.replace(" ", "").lower()


class CosmosHandle(StoreHandle):
    """
    Async Cosmos DB handle preferring one write region

    Auth: master key (HMAC-SHA256 over verb, resource type, link and date)
    Consistency: Eventual
    Writes: multi-region (the account must have multiple write locations)
    """

    def __init__(self,
                 endpoint: str,
                 key: Optional[str],
                 region: str,
                 timeout: float = 30.0,
                 consistency: str = "Eventual",
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Args:
            endpoint: Account endpoint, e.g. https://acct.documents.azure.com:443/
            key: Master key (or CONFLICTGEN_KEY env var)
            region: Preferred region for reads and writes
            timeout: Request timeout in seconds
            consistency: Consistency level header
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        super().__init__(region)
        self.endpoint = endpoint.rstrip("/")
        self.key = key or os.getenv("CONFLICTGEN_KEY")
        self.timeout = timeout
        self.consistency = consistency
        self.write_endpoint: Optional[str] = None
        self.multiple_write_locations = False
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

        if not self.key:
            raise SetupError("Cosmos master key required or set CONFLICTGEN_KEY env var")

    # ==================== Connection ====================

    async def connect(self) -> None:
        """Open the HTTP client and resolve this region's write endpoint"""
        self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        try:
            response = await self._request("GET", "", "", "", base=self.endpoint)
        except StoreError as e:
            await self.close()
            raise SetupError(f"Cannot reach account {self.endpoint} for region {self.region}: {e}")

        try:
            account = response.json()
        except ValueError as e:
            await self.close()
            raise SetupError(f"Account {self.endpoint} returned a non-JSON response: {e}")
        self.multiple_write_locations = bool(account.get("enableMultipleWriteLocations"))
        if not self.multiple_write_locations:
            logger.warning(f"Account {self.endpoint} does not enable multiple write locations; "
                           f"writes will not race across regions")

        wanted = _normalize_region(self.region)
        for location in account.get("writableLocations", []):
            if _normalize_region(location.get("name", "")) == wanted:
                self.write_endpoint = location["databaseAccountEndpoint"].rstrip("/")
                break
        else:
            await self.close()
            raise SetupError(f"Region '{self.region}' is not a writable location of {self.endpoint}")

        logger.debug(f"Region {self.region} writes via {self.write_endpoint}")

    async def close(self) -> None:
        """Close HTTP client"""
        if self._client:
            await self._client.aclose()
            self._client = None

    # ==================== Requests ====================

    def _auth_token(self, verb: str, resource_type: str, resource_link: str, date: str) -> str:
        key = base64.b64decode(self.key)
        payload = f"{verb.lower()}\n{resource_type.lower()}\n{resource_link}\n{date.lower()}\n\n"
        digest = hmac.new(key, payload.encode("utf-8"), hashlib.sha256).digest()
        signature = base64.b64encode(digest).decode()
        return urllib.parse.quote(f"type=master&ver=1.0&sig={signature}", safe="")

    async def _request(self,
                       verb: str,
                       path: str,
                       resource_type: str,
                       resource_link: str,
                       body: Optional[Dict[str, Any]] = None,
                       headers: Optional[Dict[str, str]] = None,
                       base: Optional[str] = None) -> httpx.Response:
        if self._client is None:
            await self.connect()

        date = formatdate(usegmt=True)
        request_headers = {
            "Authorization": self._auth_token(verb, resource_type, resource_link, date),
            "x-ms-date": date,
            "x-ms-version": API_VERSION,
            "x-ms-consistency-level": self.consistency,
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        request_headers.update(headers or {})

        url = f"{base or self.write_endpoint}/{path}"
        content = json.dumps(body) if body is not None else None

        try:
            response = await self._client.request(verb, url, headers=request_headers,
                                                  content=content)
        except httpx.HTTPError as e:
            raise StoreError(StoreStatus.OTHER_FAILURE, f"{verb} {path} failed: {e}")

        status = StoreStatus.from_http(response.status_code)
        if status != StoreStatus.SUCCESS:
            try:
                message = response.json().get("message", response.text)
            except ValueError:
                message = response.text
            raise StoreError(status, f"{verb} {path}: {message}", status_code=response.status_code)

        logger.debug(f"{self.region}: {verb} {path} -> {response.status_code}")
        return response

    async def _read_feed(self, verb: str, path: str, resource_type: str, resource_link: str,
                         items_key: str, body: Optional[Dict[str, Any]] = None,
                         headers: Optional[Dict[str, str]] = None) -> List[Dict[str, Any]]:
        """Follow x-ms-continuation until the feed is exhausted."""
        items: List[Dict[str, Any]] = []
        continuation = None
        while True:
            page_headers = dict(headers or {})
            if continuation:
                page_headers["x-ms-continuation"] = continuation
            response = await self._request(verb, path, resource_type, resource_link,
                                           body=body, headers=page_headers)
            items.extend(response.json().get(items_key, []))
            continuation = response.headers.get("x-ms-continuation")
            if not continuation:
                return items

    @staticmethod
    def _partition_header(partition_key: Optional[str]) -> Dict[str, str]:
        return {"x-ms-documentdb-partitionkey": json.dumps([partition_key])}

    # ==================== Documents ====================

    async def create(self, collection: CollectionRef, record: Record) -> Record:
        response = await self._request(
            "POST", f"{collection.link}/docs", "docs", collection.link,
            body=record.to_document(),
            headers=self._partition_header(record.postal_code),
        )
        return Record.from_document(response.json())

    async def replace(self, collection: CollectionRef, record: Record,
                      if_match: Optional[str] = None) -> Record:
        link = collection.document_link(record.id)
        headers = self._partition_header(record.postal_code)
        if if_match:
            headers["If-Match"] = if_match
        response = await self._request("PUT", link, "docs", link,
                                       body=record.to_document(), headers=headers)
        return Record.from_document(response.json())

    async def delete(self, collection: CollectionRef, record: Record,
                     if_match: Optional[str] = None) -> None:
        link = collection.document_link(record.id)
        headers = self._partition_header(record.postal_code)
        if if_match:
            headers["If-Match"] = if_match
        await self._request("DELETE", link, "docs", link, headers=headers)

    async def query(self, collection: CollectionRef,
                    predicate: Optional[RecordPredicate] = None,
                    cross_partition: bool = True) -> List[Record]:
        headers = {
            "x-ms-documentdb-isquery": "True",
            "Content-Type": "application/query+json",
        }
        if cross_partition:
            headers["x-ms-documentdb-query-enablecrosspartition"] = "True"
        documents = await self._read_feed(
            "POST", f"{collection.link}/docs", "docs", collection.link, "Documents",
            body={"query": "SELECT * FROM c", "parameters": []},
            headers=headers,
        )
        records = [Record.from_document(d) for d in documents]
        if predicate is not None:
            records = [r for r in records if predicate(r)]
        return records

    # ==================== Conflict feed ====================

    async def read_conflicts(self, collection: CollectionRef) -> List[ConflictRecord]:
        entries = await self._read_feed(
            "GET", f"{collection.link}/conflicts", "conflicts", collection.link, "Conflicts",
            headers={"x-ms-documentdb-query-enablecrosspartition": "True"},
        )
        return [ConflictRecord.from_dict(e) for e in entries]

    async def delete_conflict(self, collection: CollectionRef,
                              conflict: ConflictRecord) -> None:
        link = f"{collection.link}/conflicts/{conflict.id}"
        headers = {}
        if conflict.partition_key is not None:
            headers = self._partition_header(conflict.partition_key)
        await self._request("DELETE", link, "conflicts", link, headers=headers)

    # ==================== Setup ====================

    async def ensure_database(self, database: str) -> bool:
        try:
            await self._request("POST", "dbs", "dbs", "", body={"id": database})
        except StoreError as e:
            if e.status == StoreStatus.ALREADY_EXISTS:
                return False
            raise
        return True

    async def ensure_collection(self, database: str, spec: CollectionSpec,
                                throughput: Optional[int] = None) -> bool:
        headers = {}
        if throughput:
            headers["x-ms-offer-throughput"] = str(throughput)
        try:
            await self._request("POST", f"dbs/{database}/colls", "colls", f"dbs/{database}",
                                body=spec.to_dict(), headers=headers)
        except StoreError as e:
            if e.status == StoreStatus.ALREADY_EXISTS:
                return False
            raise
        return True

    def describe(self) -> Dict[str, Any]:
        info = super().describe()
        info.update({
            "endpoint": self.endpoint,
            "write_endpoint": self.write_endpoint,
            "multiple_write_locations": self.multiple_write_locations,
        })
        return info
