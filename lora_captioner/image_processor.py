"""
Batch processing of the uploaded image set.
Captions images one at a time, paces provider calls and records progress in the run log.
"""

import time
import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from .captions import CaptionOptions, CaptionResult
from .config import REQUEST_DELAY_SECONDS
from .errors import ErrorCode, create_error, invalid_input
from .file_manager import FileManager, ProcessedResult
from .rate_limit import RequestPacer

SEPARATOR = "=" * 40


@dataclass
class BatchSummary:
    results: List[ProcessedResult] = field(default_factory=list)
    success_count: int = 0
    error_count: int = 0


def output_filename(prefix: str, index: int) -> str:
    return f"{prefix}_{index:05d}.jpg"


class BatchProcessor:
    """Runs one captioning batch at a time over a FileManager's upload set."""

    def __init__(self, store: FileManager, generator, request_delay=REQUEST_DELAY_SECONDS,
                 sleep=time.sleep):
        self.store = store
        self.generator = generator
        self.request_delay = request_delay
        self.sleep = sleep
        self._run_lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    def _caption_one(self, image_bytes: bytes, options: CaptionOptions, provider: str, model: str) -> CaptionResult:
        try:
            return self.generator.generate_result(image_bytes, options, provider, model)
        except Exception as e:
            # The generator should never raise; still keep one output per input
            logging.exception(f"Caption generator raised unexpectedly: {e}")
            error = create_error(ErrorCode.UNKNOWN_ERROR, "Caption generation failed", str(e))
            return CaptionResult(f"{options.keyword}, processing failed", error)

    def run(self, images: Dict[str, bytes], options: CaptionOptions, provider: str, model: str,
            prefix: str, on_progress: Optional[Callable[[int, int, CaptionResult], None]] = None) -> BatchSummary:
        """Caption every image in order and persist the results in one store write."""
        if not self._run_lock.acquire(blocking=False):
            raise invalid_input(
                "A batch is already running",
                "Only one processing run can be active at a time",
                "Wait for the current run to finish, then try again.",
                status_code=409,
            )

        try:
            return self._run(images, options, provider, model, prefix, on_progress)
        finally:
            self._run_lock.release()

    def _run(self, images, options, provider, model, prefix, on_progress) -> BatchSummary:
        store = self.store
        total = len(images)

        store.clear_logs()
        store.add_log(SEPARATOR)
        store.add_log("Starting new run...")
        store.add_log(f"Provider: {provider}")
        store.add_log(f"Model: {model}")
        store.add_log(f"Target Base Model: {options.checkpoint}")
        store.add_log(f"Found {total} images. Processing...")

        logging.info(f"🚀 Captioning {total} images with {provider}/{model}")

        pacer = RequestPacer(self.request_delay, sleep=self.sleep)
        summary = BatchSummary()

        for idx, image_bytes in enumerate(images.values(), start=1):
            pacer.wait()
            store.add_log(f"Processing {idx}/{total}...")

            result = self._caption_one(image_bytes, options, provider, model)
            new_filename = output_filename(prefix, idx)
            summary.results.append(ProcessedResult(new_filename, result.caption, image_bytes))

            if result.ok:
                summary.success_count += 1
                store.add_log(f"✓ {new_filename} -> {result.caption}")
            else:
                summary.error_count += 1
                store.add_log(f"⚠️ {new_filename} -> {result.caption}")

            if on_progress is not None:
                on_progress(idx, total, result)

        store.set_processed_results(summary.results)

        store.add_log(SEPARATOR)
        store.add_log(f"✅ Processed: {summary.success_count} images")
        if summary.error_count > 0:
            store.add_log(f"⚠️ Warnings/Errors: {summary.error_count} images")
        store.add_log("Click 'Download ZIP' to get your processed files.")

        logging.info(f"🎉 Batch complete: {summary.success_count} ok, {summary.error_count} with errors")
        return summary
