"""Async client for the recording ingestion endpoint."""

import logging

import httpx

from callrelay.schemas.relay import FilePair, ParsedMetadata

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-API-Key"
PRIMARY_MIME = "audio/mpeg"
SIDECAR_MIME = "text/plain"


class UploadError(Exception):
    """Raised when a pair could not be delivered.

    ``status_code`` is set when the server answered with a non-success
    status, and None for read failures and transport errors.
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class IngestClient:
    """Async HTTP client for the ingestion endpoint.

    One instance holds one connection pool for the life of the process.

    Usage::

        async with IngestClient(url, api_key) as client:
            body = await client.upload_pair(pair, metadata)
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        *,
        verify_tls: bool = True,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        if not verify_tls:
            logger.warning("TLS certificate verification is DISABLED for %s", url)
        self._client = httpx.AsyncClient(
            headers={API_KEY_HEADER: api_key},
            verify=verify_tls,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "IngestClient":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    @property
    def url(self) -> str:
        return self._url

    async def upload_pair(self, pair: FilePair, metadata: ParsedMetadata) -> str:
        """Send a recording and its transcript as one multipart POST.

        Both files are read completely before anything goes on the wire, so
        a half-missing pair never produces a partial submission.

        Returns:
            The response body, stripped.

        Raises:
            UploadError: If either file cannot be read, the request fails, or
                the server answers with a non-2xx status.
        """
        try:
            primary_bytes = pair.primary_path.read_bytes()
            sidecar_bytes = pair.sidecar_path.read_bytes()
        except OSError as exc:
            raise UploadError(f"Cannot read {pair.stem}: {exc}") from exc

        data = {
            "talkgroupId": metadata.talkgroup_id,
            "timestamp": metadata.timestamp,
            "radioId": metadata.radio_id,
        }
        files = {
            "mp3": (pair.primary_path.name, primary_bytes, PRIMARY_MIME),
            "transcription": (pair.sidecar_path.name, sidecar_bytes, SIDECAR_MIME),
        }

        try:
            response = await self._client.post(self._url, data=data, files=files)
        except httpx.HTTPError as exc:
            raise UploadError(f"Request for {pair.stem} failed: {exc}") from exc

        if not response.is_success:
            raise UploadError(
                f"Ingest rejected {pair.stem}: HTTP {response.status_code}",
                status_code=response.status_code,
            )

        logger.debug("Ingest accepted %s: HTTP %d", pair.stem, response.status_code)
        return response.text.strip()
