"""Turn change notifications into at-most-once pair uploads.

Every path of every notification runs through the same steps::

    is_eligible -> resolve_pair -> parse_filename -> claim -> upload

Any step can end the path's journey. Only a claimed, parseable, complete
pair reaches the ingest client, and a failure there is logged against that
pair alone.
"""

import asyncio
import logging
from collections import Counter
from collections.abc import AsyncIterable
from datetime import UTC, datetime
from pathlib import Path

from callrelay.integrations.ingest import IngestClient, UploadError
from callrelay.relay.audit import RelayAuditLog
from callrelay.relay.dedup import RecentUploads
from callrelay.relay.filename import parse_filename
from callrelay.relay.pairing import is_eligible, resolve_pair
from callrelay.schemas.relay import (
    ChangeNotification,
    FilePair,
    ParsedMetadata,
    RelayEvent,
    RelayStatus,
)

logger = logging.getLogger(__name__)


class RelayPipeline:
    """Single consumer of change notifications for one watched root.

    With ``concurrent=False`` each upload finishes before the next path is
    looked at. With ``concurrent=True`` uploads run as background tasks; the
    claim is still taken before the task starts, so a pair is never sent twice.

    A failed upload gives its claim back. Both halves of a pair raise their
    own event, so a pair whose first attempt fails is normally attempted a
    second time as soon as the other half's event arrives. Expect two
    attempts (and two error records) for a pair the endpoint keeps refusing.
    """

    def __init__(
        self,
        watched_root: str | Path,
        client: IngestClient,
        *,
        recent: RecentUploads | None = None,
        audit_log: RelayAuditLog | None = None,
        concurrent: bool = False,
    ) -> None:
        self._root = Path(watched_root)
        self._client = client
        self._recent = recent if recent is not None else RecentUploads()
        self._audit_log = audit_log
        self._concurrent = concurrent
        self._pending: set[asyncio.Task] = set()
        self.stats: Counter[str] = Counter()

    @property
    def pending_uploads(self) -> int:
        return len(self._pending)

    async def run(self, notifications: AsyncIterable[ChangeNotification | Exception]) -> None:
        """Consume notifications until the source ends or the task is cancelled.

        Exceptions yielded by the source are watch-layer errors: they are
        logged and the loop carries on.
        """
        try:
            async for item in notifications:
                if isinstance(item, Exception):
                    self.stats["watch_errors"] += 1
                    logger.error("Watch error: %s", item)
                    continue
                await self.process_notification(item)
            await self.drain()
        finally:
            for task in list(self._pending):
                task.cancel()

    async def drain(self) -> None:
        """Wait for every background upload started so far."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def process_notification(self, notification: ChangeNotification) -> list[RelayEvent]:
        """Run each path of one notification through the pipeline, in order."""
        logger.debug("Notification %s: %s", notification.event_type, list(notification.paths))
        events: list[RelayEvent] = []
        for path in notification.paths:
            try:
                event = await self.process_path(path)
            except Exception:
                self.stats["unexpected_errors"] += 1
                logger.exception("Unexpected failure handling %s", path)
                continue
            if event is not None:
                events.append(event)
        return events

    async def process_path(self, path: str | Path) -> RelayEvent | None:
        """Process one changed path.

        Returns:
            The RelayEvent for the pair, or None when the path was not
            eligible, its pair is incomplete, or its upload was handed to a
            background task.
        """
        path = Path(path)
        if not is_eligible(path, self._root):
            logger.debug("Ignoring %s", path)
            return None

        pair = resolve_pair(path)
        if pair is None:
            return None

        metadata = parse_filename(pair.primary_path.name)
        if metadata is None:
            logger.info("Skipping %s: filename carries no talkgroup metadata", pair.primary_path.name)
            return self._record(pair, RelayStatus.SKIPPED)

        if not self._recent.claim(pair.key):
            logger.debug("Already relayed %s, ignoring repeat trigger", pair.stem)
            return self._record(pair, RelayStatus.DUPLICATE, metadata)

        if self._concurrent:
            task = asyncio.create_task(self._upload(pair, metadata), name=f"upload:{pair.stem}")
            self._pending.add(task)
            task.add_done_callback(self._task_done)
            return None

        return await self._upload(pair, metadata)

    def _task_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.stats["unexpected_errors"] += 1
            logger.error("Background upload %s crashed: %s", task.get_name(), exc)

    async def _upload(self, pair: FilePair, metadata: ParsedMetadata) -> RelayEvent:
        logger.info(
            "Uploading %s (talkgroup=%s radio=%s timestamp=%s)",
            pair.stem,
            metadata.talkgroup_id,
            metadata.radio_id,
            metadata.timestamp,
        )
        try:
            body = await self._client.upload_pair(pair, metadata)
        except UploadError as exc:
            # A later event for this pair may try again.
            self._recent.release(pair.key)
            logger.error("Upload failed for %s: %s", pair.stem, exc)
            return self._record(
                pair,
                RelayStatus.ERROR,
                metadata,
                http_status=exc.status_code,
                error_message=str(exc),
            )
        except BaseException:
            # includes cancellation and client bugs
            self._recent.release(pair.key)
            raise

        logger.info("Uploaded %s", pair.stem)
        return self._record(pair, RelayStatus.UPLOADED, metadata, response_text=body)

    def _record(
        self,
        pair: FilePair,
        status: RelayStatus,
        metadata: ParsedMetadata | None = None,
        **details: object,
    ) -> RelayEvent:
        event = RelayEvent(
            timestamp=datetime.now(UTC),
            pair_key=pair.key,
            stem=pair.stem,
            primary_path=str(pair.primary_path),
            sidecar_path=str(pair.sidecar_path),
            status=status,
            talkgroup_id=metadata.talkgroup_id if metadata else "",
            radio_id=metadata.radio_id if metadata else "",
            recorded_at=metadata.timestamp if metadata else "",
            **details,
        )
        self.stats[status.value] += 1
        if self._audit_log is not None:
            self._audit_log.log(event)
        return event
