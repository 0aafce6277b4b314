"""Supabase Storage and PostgREST clients for audio objects and parent records."""

import asyncio
import logging
import re
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional
from urllib.parse import quote, unquote

import aiohttp

from ..errors import (
    NETWORK_FAILURE,
    PARENT_LINK_FAILED,
    STORAGE_WRITE_FAILED,
    RecordStoreError,
    StorageError,
)
from .object_urls import LOCAL_SCHEME

logger = logging.getLogger(__name__)


class SupabaseClient:
    """Shared plumbing: base URL, auth headers, per-call HTTP sessions."""

    def __init__(self, url: str, api_key: str, access_token: Optional[str] = None,
                 timeout_seconds: float = 30.0, session: Optional[aiohttp.ClientSession] = None):
        """Initialize Supabase client.

        Args:
            url: Project URL, e.g. https://xyz.supabase.co
            api_key: Project API key (anon or service role)
            access_token: User JWT; falls back to the API key
            timeout_seconds: Total timeout for each HTTP call
            session: Optional shared aiohttp session (owned by the caller)
        """
        if not url:
            raise ValueError("Supabase URL not configured")
        if not api_key:
            raise ValueError("Supabase API key not configured")
        self.url = url.rstrip("/")
        self.api_key = api_key
        self.access_token = access_token
        self.timeout_seconds = timeout_seconds
        self._shared_session = session

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.access_token or self.api_key}",
        }
        if extra:
            headers.update(extra)
        return headers

    @asynccontextmanager
    async def _session(self):
        if self._shared_session is not None:
            yield self._shared_session
            return
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            yield session


class SupabaseStorage(SupabaseClient):
    """Object storage service backed by one Supabase Storage bucket."""

    def __init__(self, url: str, api_key: str, bucket: str, **kwargs):
        super().__init__(url, api_key, **kwargs)
        self.bucket = bucket
        self._address_patterns = [
            re.compile(rf"/storage/v1/object/public/{re.escape(bucket)}/([^?]+)"),
            re.compile(rf"/storage/v1/object/sign/{re.escape(bucket)}/([^?]+)\?"),
            re.compile(rf"/{re.escape(bucket)}/([^?]+)$"),
        ]
        logger.info(f"SupabaseStorage initialized for bucket: {bucket}")

    def _object_url(self, path: str) -> str:
        return f"{self.url}/storage/v1/object/{self.bucket}/{quote(path, safe='/')}"

    async def put(self, path: str, data: bytes, content_type: str, upsert: bool = True) -> str:
        """Upload an object and return its public address.

        Raises:
            StorageError: STORAGE_WRITE_FAILED if rejected, NETWORK_FAILURE if unreachable
        """
        headers = self._headers({
            "Content-Type": content_type,
            "x-upsert": "true" if upsert else "false",
        })
        logger.info(f"Uploading {len(data)} bytes to {self.bucket}/{path}")
        try:
            async with self._session() as session:
                async with session.post(self._object_url(path), data=data, headers=headers) as response:
                    if response.status not in (200, 201):
                        error_text = await response.text()
                        raise StorageError(STORAGE_WRITE_FAILED, f"{response.status} - {error_text}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise StorageError(NETWORK_FAILURE, str(e) or type(e).__name__) from e

        logger.info(f"Upload successful: {self.bucket}/{path}")
        return self.get_public_address(path)

    async def delete(self, path: str) -> None:
        """Remove an object from the bucket."""
        url = f"{self.url}/storage/v1/object/{self.bucket}"
        logger.info(f"Deleting {self.bucket}/{path}")
        try:
            async with self._session() as session:
                async with session.delete(url, json={"prefixes": [path]}, headers=self._headers()) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        raise StorageError(STORAGE_WRITE_FAILED, f"{response.status} - {error_text}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise StorageError(NETWORK_FAILURE, str(e) or type(e).__name__) from e

    def get_public_address(self, path: str) -> str:
        return f"{self.url}/storage/v1/object/public/{self.bucket}/{quote(path, safe='/')}"

    async def check_access(self) -> bool:
        """Return True if the bucket can be listed with the current credentials."""
        url = f"{self.url}/storage/v1/object/list/{self.bucket}"
        try:
            async with self._session() as session:
                async with session.post(url, json={"prefix": "", "limit": 1}, headers=self._headers()) as response:
                    if response.status != 200:
                        logger.error(f"Bucket {self.bucket} not accessible: {response.status}")
                        return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Bucket {self.bucket} not reachable: {e}")
            return False
        logger.info(f"Bucket {self.bucket} is accessible")
        return True

    def path_from_address(self, address: str) -> Optional[str]:
        """Extract the object path from a public or signed address of this bucket."""
        for pattern in self._address_patterns:
            match = pattern.search(address)
            if match:
                return unquote(match.group(1))
        logger.debug(f"No storage path recognised in {address}")
        return None

    def resolve_address(self, path_or_address: Optional[str]) -> Optional[str]:
        """Turn a stored reference (full URL, local address or bucket path) into a playable address."""
        if not path_or_address or not path_or_address.strip():
            return None
        value = path_or_address.strip()
        if value.startswith(("http://", "https://", LOCAL_SCHEME)):
            return value
        return self.get_public_address(value)


class SupabaseRecordStore(SupabaseClient):
    """Parent record store: the audio reference column of a PostgREST table."""

    def __init__(self, url: str, api_key: str, table: str = "intervention_reports",
                 column: str = "audio_url", key_column: str = "id", **kwargs):
        super().__init__(url, api_key, **kwargs)
        self.table = table
        self.column = column
        self.key_column = key_column
        logger.info(f"SupabaseRecordStore initialized for {table}.{column}")

    def _table_url(self) -> str:
        return f"{self.url}/rest/v1/{self.table}"

    async def update_audio_reference(self, parent_record_id: str, address: Optional[str]) -> None:
        """Set (or clear, with None) the audio reference of a parent record.

        Raises:
            RecordStoreError: if the update is rejected or matches no record
        """
        params = {self.key_column: f"eq.{parent_record_id}", "select": self.column}
        headers = self._headers({"Prefer": "return=representation"})
        try:
            async with self._session() as session:
                async with session.patch(self._table_url(), params=params,
                                         json={self.column: address}, headers=headers) as response:
                    if response.status >= 300:
                        error_text = await response.text()
                        raise RecordStoreError(f"{response.status} - {error_text}")
                    rows: List[Dict[str, Any]] = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RecordStoreError(str(e) or type(e).__name__, code=NETWORK_FAILURE) from e

        if not rows:
            raise RecordStoreError(f"No {self.table} row with {self.key_column}={parent_record_id}",
                                   code=PARENT_LINK_FAILED)
        logger.info(f"{self.table} {parent_record_id}: {self.column} = {rows[0].get(self.column)}")

    async def get_audio_reference(self, parent_record_id: str) -> Optional[str]:
        params = {self.key_column: f"eq.{parent_record_id}", "select": self.column}
        try:
            async with self._session() as session:
                async with session.get(self._table_url(), params=params, headers=self._headers()) as response:
                    if response.status >= 300:
                        error_text = await response.text()
                        raise RecordStoreError(f"{response.status} - {error_text}")
                    rows = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RecordStoreError(str(e) or type(e).__name__, code=NETWORK_FAILURE) from e
        return rows[0].get(self.column) if rows else None


async def download(address: str, timeout_seconds: float = 30.0) -> bytes:
    """Fetch the bytes behind a durable address."""
    timeout = aiohttp.ClientTimeout(total=timeout_seconds)
    try:
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(address) as response:
                if response.status != 200:
                    raise StorageError(NETWORK_FAILURE, f"Download failed: {response.status}")
                return await response.read()
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise StorageError(NETWORK_FAILURE, str(e) or type(e).__name__) from e
