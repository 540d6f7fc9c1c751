"""Bounded-parallelism download of an ordered chunk list."""

import logging
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import NamedTuple

from app.config import get_settings
from app.services.storage import ChunkStore, StorageError

logger = logging.getLogger(__name__)


class ChunkRef(NamedTuple):
    chunk_index: int
    storage_path: str


class ChunkDownloadError(Exception):
    """A chunk could not be retrieved; the whole download is abandoned."""

    def __init__(self, chunk_index: int, message: str):
        super().__init__(message)
        self.chunk_index = chunk_index
        self.message = message


class ChunkDownloader:
    """Downloads chunk payloads in sequential batches of concurrent requests.

    Each worker writes its payload into the slot of a pre-sized list given by
    the chunk's position, so results come back in chunk-index order no matter
    which request finishes first.
    """

    def __init__(self, store: ChunkStore, batch_size: int | None = None):
        self.store = store
        self.batch_size = batch_size or get_settings().DOWNLOAD_BATCH_SIZE
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")

    def download_all(
        self,
        chunks: Sequence[ChunkRef],
        on_batch_complete: Callable[[int, int], None] | None = None,
        log: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> list[bytes]:
        """Fetch every chunk payload.

        Args:
            chunks: Chunk descriptors sorted by ``chunk_index`` and contiguous from 0.
            on_batch_complete: Called with (chunks done, total) after each batch.
            log: Logger to report progress on.

        Returns:
            Payloads in chunk-index order.

        Raises:
            ChunkDownloadError: If any chunk in a batch fails. The lowest failing
                index of that batch is reported.
        """
        log = log or logger
        total = len(chunks)
        for position, chunk in enumerate(chunks):
            if chunk.chunk_index != position:
                raise ChunkDownloadError(position, f"Chunk {position} is missing")

        results: list[bytes | None] = [None] * total
        batch_count = (total + self.batch_size - 1) // self.batch_size

        for batch_number, start in enumerate(range(0, total, self.batch_size), start=1):
            batch = chunks[start : start + self.batch_size]
            log.info("Downloading batch %d/%d (%d chunks)", batch_number, batch_count, len(batch))

            failures: dict[int, str] = {}
            with ThreadPoolExecutor(max_workers=len(batch)) as pool:
                futures = {pool.submit(self.store.get, chunk.storage_path): chunk for chunk in batch}
                for future in as_completed(futures):
                    chunk = futures[future]
                    try:
                        results[chunk.chunk_index] = future.result()
                    except StorageError as e:
                        failures[chunk.chunk_index] = e.message

            if failures:
                failed_index = min(failures)
                log.error(
                    "Batch %d failed on %d chunk(s), first failing index %d: %s",
                    batch_number,
                    len(failures),
                    failed_index,
                    failures[failed_index],
                )
                raise ChunkDownloadError(
                    failed_index, f"Failed to download chunk {failed_index}: {failures[failed_index]}"
                )

            if on_batch_complete is not None:
                on_batch_complete(start + len(batch), total)

        log.info("Downloaded %d chunks", total)
        return results  # type: ignore[return-value]
