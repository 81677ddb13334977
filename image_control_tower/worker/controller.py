"""
Import controller.

Drives StreamReconciler against a StreamRepository: assigns generations,
runs imports concurrently, and folds their outcomes back into the stream.

Writes to one stream are serialized by a per-stream asyncio.Lock and guarded
by compare-and-swap on the stream's resource version, so a second controller
process sharing the database loses races cleanly instead of corrupting the
history. Imports themselves run outside the lock. Repository calls are
blocking and run in worker threads via asyncio.to_thread.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Dict, List, Optional, Set, Tuple

import structlog

from ..config import Settings
from ..images.enums import ImportFailureReason
from ..images.errors import ConflictError, ImageStreamError, NotFoundError
from ..images.reconciler import ImportOutcome, ImportRequest, StreamReconciler
from ..images.stream import ImageStream
from .importer import Importer
from .repository import StreamRepository

logger = structlog.get_logger(__name__)

StreamKey = Tuple[str, str]
Mutation = Callable[[ImageStream], Optional[ImageStream]]


class ImportController:
    """Runs reconcile passes and imports for every stream in a repository."""

    def __init__(
        self,
        repository: StreamRepository,
        importer: Importer,
        reconciler: Optional[StreamReconciler] = None,
        import_timeout: float = 60.0,
        max_concurrent_imports: int = 5,
        scheduled_interval: float = 900.0,
        max_retries: int = 5,
    ):
        self.repository = repository
        self.importer = importer
        self.reconciler = reconciler or StreamReconciler()
        self.import_timeout = import_timeout
        self.scheduled_interval = scheduled_interval
        self.max_retries = max_retries

        self._semaphore = asyncio.Semaphore(max_concurrent_imports)
        self._locks: Dict[StreamKey, asyncio.Lock] = {}
        self._in_flight: Dict[StreamKey, Dict[Tuple[str, int], asyncio.Task]] = {}
        self._scheduler: Optional[asyncio.Task] = None
        self.is_running = False

    @classmethod
    def from_settings(
        cls, repository: StreamRepository, importer: Importer, settings: Settings
    ) -> "ImportController":
        return cls(
            repository,
            importer,
            import_timeout=settings.import_timeout_seconds,
            max_concurrent_imports=settings.max_concurrent_imports,
            scheduled_interval=settings.scheduled_import_interval_seconds,
            max_retries=settings.reconcile_max_retries,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the scheduled re-import loop."""
        self.is_running = True
        self._scheduler = asyncio.create_task(self._schedule_loop())
        logger.info("import_controller_started", interval=self.scheduled_interval)

    async def stop(self) -> None:
        """Stop scheduling and cancel every running import."""
        self.is_running = False
        tasks: List[asyncio.Task] = []
        if self._scheduler is not None:
            self._scheduler.cancel()
            tasks.append(self._scheduler)
            self._scheduler = None
        for running in self._in_flight.values():
            for task in running.values():
                task.cancel()
                tasks.append(task)

        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.importer.close()
        logger.info("import_controller_stopped")

    async def _schedule_loop(self) -> None:
        while self.is_running:
            try:
                await self.sync_scheduled()
            except Exception:
                logger.exception("scheduled_pass_failed")
            await asyncio.sleep(self.scheduled_interval)

    # ------------------------------------------------------------------
    # Reconcile passes
    # ------------------------------------------------------------------

    async def sync(self, namespace: str, name: str, recheck: bool = False) -> List[ImportRequest]:
        """Run one reconcile pass for a stream and start the imports it asks for.

        Raises:
            NotFoundError: if the stream does not exist.
            ConflictError: if every retry lost against a concurrent writer.
        """
        key = (namespace, name)
        requests: List[ImportRequest] = []

        def reconcile(stream: ImageStream) -> Optional[ImageStream]:
            result = self.reconciler.reconcile(
                stream, in_flight=self._in_flight.get(key, {}).keys(), recheck=recheck
            )
            requests[:] = result.requests
            return None if result.stream == stream else result.stream

        await self._mutate(key, reconcile)

        for request in requests:
            task = asyncio.create_task(self._run_import(request))
            self._in_flight.setdefault(key, {})[request.key] = task
            task.add_done_callback(
                lambda _, k=key, r=request.key: self._forget(k, r)
            )
        return requests

    def _forget(self, key: StreamKey, request_key: Tuple[str, int]) -> None:
        running = self._in_flight.get(key)
        if running is None:
            return
        running.pop(request_key, None)
        if not running:
            del self._in_flight[key]

    async def sync_all(self, recheck: bool = False) -> int:
        """Reconcile every stream; returns the number of imports started."""
        started = 0
        for stream in await asyncio.to_thread(self.repository.list):
            try:
                started += len(await self.sync(stream.namespace, stream.name, recheck=recheck))
            except ImageStreamError as e:
                logger.warning("sync_failed", stream=f"{stream.namespace}/{stream.name}", error=e.message)
        return started

    async def sync_scheduled(self) -> int:
        """Re-import scheduled tags of every stream that has some."""
        started = 0
        for stream in await asyncio.to_thread(self.repository.list):
            if not stream.has_scheduled_tags():
                continue
            try:
                started += len(await self.sync(stream.namespace, stream.name, recheck=True))
            except ImageStreamError as e:
                logger.warning("scheduled_sync_failed", stream=f"{stream.namespace}/{stream.name}", error=e.message)
        return started

    def in_flight(self, namespace: str, name: str) -> Set[Tuple[str, int]]:
        """``(tag, generation)`` pairs currently being imported for a stream."""
        return set(self._in_flight.get((namespace, name), {}))

    def cancel(self, namespace: str, name: str, tag: Optional[str] = None) -> int:
        """Cancel running imports of a stream (or of one tag); outcomes are dropped."""
        cancelled = 0
        for (tag_name, generation), task in list(self._in_flight.get((namespace, name), {}).items()):
            if tag is None or tag_name == tag:
                task.cancel()
                cancelled += 1
                logger.info("import_cancelled", stream=f"{namespace}/{name}", tag=tag_name, generation=generation)
        return cancelled

    async def wait_idle(self, namespace: Optional[str] = None, name: Optional[str] = None) -> None:
        """Wait until the running imports (of one stream, or all) have finished."""
        while True:
            if namespace is not None:
                tasks = list(self._in_flight.get((namespace, name), {}).values())
            else:
                tasks = [t for running in self._in_flight.values() for t in running.values()]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Imports
    # ------------------------------------------------------------------

    async def _run_import(self, request: ImportRequest) -> None:
        log = logger.bind(
            stream=f"{request.namespace}/{request.stream}",
            tag=request.tag,
            generation=request.generation,
        )
        try:
            async with self._semaphore:
                result = await asyncio.wait_for(
                    self.importer.import_image(request.from_, request.insecure),
                    timeout=self.import_timeout,
                )
        except asyncio.TimeoutError:
            log.warning("import_timed_out", timeout=self.import_timeout)
            outcome = ImportOutcome.failure(
                request.tag,
                request.generation,
                ImportFailureReason.IMPORT_TIMEOUT.value,
                f"import of {request.from_.name} did not finish within {self.import_timeout}s",
            )
        except Exception as e:  # importer bugs must not kill the controller
            log.exception("import_crashed")
            outcome = ImportOutcome.failure(
                request.tag, request.generation, ImportFailureReason.INTERNAL_ERROR.value, str(e)
            )
        else:
            outcome = await self._outcome_for(request, result, log)

        await self._apply(request, outcome, log)

    async def _outcome_for(self, request: ImportRequest, result, log) -> ImportOutcome:
        if not result.succeeded:
            log.info("import_failed", reason=result.failure.reason)
            return ImportOutcome.failure(
                request.tag, request.generation, result.failure.reason, result.failure.message
            )
        try:
            image = await asyncio.to_thread(self.repository.put_image, result.image)
        except ImageStreamError as e:
            log.warning("image_rejected", image=result.image.name, error=e.message)
            return ImportOutcome.failure(
                request.tag, request.generation, ImportFailureReason.INTERNAL_ERROR.value, e.message
            )
        log.info("import_succeeded", image=image.name)
        return ImportOutcome.success(request.tag, request.generation, image)

    async def _apply(self, request: ImportRequest, outcome: ImportOutcome, log) -> None:
        key = (request.namespace, request.stream)
        try:
            await self._mutate(key, lambda stream: self.reconciler.apply_outcome(stream, outcome))
        except NotFoundError:
            log.info("outcome_dropped", reason="stream deleted")
        except ConflictError as e:
            # The tag stays pending and is picked up by the next pass.
            log.warning("outcome_dropped", reason="conflict", error=e.message)

    # ------------------------------------------------------------------
    # Serialized read-modify-write
    # ------------------------------------------------------------------

    async def _mutate(self, key: StreamKey, mutation: Mutation) -> Optional[ImageStream]:
        """Apply ``mutation`` under the stream lock, retrying on write conflicts.

        ``mutation`` returns the updated stream, or None when there is
        nothing to write. The lock of a stream that no longer exists is
        forgotten.
        """
        namespace, name = key
        lock = self._locks.setdefault(key, asyncio.Lock())
        try:
            async with lock:
                for attempt in range(self.max_retries + 1):
                    current = await asyncio.to_thread(self.repository.get, namespace, name)
                    if current is None:
                        raise NotFoundError("ImageStream", f"{namespace}/{name}")
                    updated = mutation(current)
                    if updated is None:
                        return current
                    try:
                        return await asyncio.to_thread(
                            self.repository.save, updated, current.resource_version
                        )
                    except ConflictError:
                        logger.info("stream_write_conflict", stream=f"{namespace}/{name}", attempt=attempt + 1)
                raise ConflictError(f"{namespace}/{name}")
        except NotFoundError:
            if not lock.locked():
                self._locks.pop(key, None)
            raise
