"""
File management module for the result store: uploaded images, processed
image/caption pairs and the run log, mirrored on the filesystem.
"""

import os
import re
import json
import time
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List

from .config import (
    UPLOAD_DIR, PROCESSED_DIR, LOG_FILE, ALLOWED_EXTENSIONS,
    CLEANUP_RETENTION_DAYS, MAX_LOG_ENTRY_LENGTH
)
from .errors import DirectoryTraversalError

# Upload names in insertion order, kept beside the uploads
UPLOAD_ORDER_FILE = ".upload_order"

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")
_WHITESPACE = re.compile(r"\s+")


@dataclass
class ProcessedResult:
    filename: str
    caption: str
    image_bytes: bytes


def safe_path(base_dir: str, filename: str) -> str:
    """Resolve filename under base_dir without touching the filesystem.

    Raises DirectoryTraversalError if the result would escape base_dir.
    """
    base = os.path.abspath(base_dir)
    target = os.path.abspath(os.path.join(base, filename))
    if target == base or os.path.commonpath([base, target]) != base:
        raise DirectoryTraversalError(filename, base_dir)
    return target


def caption_filename(image_filename: str) -> str:
    return os.path.splitext(image_filename)[0] + '.txt'


def sanitize_log_message(message: str) -> str:
    message = _CONTROL_CHARS.sub("", str(message))
    message = _WHITESPACE.sub(" ", message).strip()
    if len(message) > MAX_LOG_ENTRY_LENGTH:
        message = message[:MAX_LOG_ENTRY_LENGTH - 3] + "..."
    return message


class FileManager:
    """Filesystem mirror of the current image set, its results and the run log.

    Every mutation runs under one lock. Reads do not take it and can observe a
    half-written state if they race a mutation.
    """

    def __init__(self, upload_dir=None, processed_dir=None, log_file=None):
        """Initialize with upload, processed and log locations."""
        self.upload_dir = os.path.abspath(upload_dir or UPLOAD_DIR)
        self.processed_dir = os.path.abspath(processed_dir or PROCESSED_DIR)
        self.log_file = os.path.abspath(log_file or LOG_FILE)
        self._lock = threading.Lock()

        os.makedirs(self.upload_dir, exist_ok=True)
        os.makedirs(self.processed_dir, exist_ok=True)

    def _clear_dir(self, directory: str) -> int:
        removed = 0
        for name in os.listdir(directory):
            path = safe_path(directory, name)
            if os.path.isfile(path):
                os.remove(path)
                if name != UPLOAD_ORDER_FILE:
                    removed += 1
        return removed

    def _upload_order(self) -> List[str]:
        path = os.path.join(self.upload_dir, UPLOAD_ORDER_FILE)
        if not os.path.exists(path):
            return []
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)

    # ------------------------------------------------------------------
    # Uploads
    # ------------------------------------------------------------------

    def set_uploaded_images(self, images: Dict[str, bytes]):
        """Replace the current upload set wholesale, remembering its order."""
        # Validate every name before deleting anything
        targets = [(safe_path(self.upload_dir, name), data) for name, data in images.items()]

        with self._lock:
            self._clear_dir(self.upload_dir)
            for path, data in targets:
                with open(path, 'wb') as f:
                    f.write(data)
            with open(os.path.join(self.upload_dir, UPLOAD_ORDER_FILE), 'w', encoding='utf-8') as f:
                json.dump(list(images), f)

        logging.info(f"📥 Stored {len(targets)} uploaded images")

    def get_uploaded_images(self) -> Dict[str, bytes]:
        """Current uploads in the order they were stored.

        Files the order manifest does not list follow, sorted by name.
        """
        present = set(os.listdir(self.upload_dir))
        present.discard(UPLOAD_ORDER_FILE)
        ordered = [name for name in self._upload_order() if name in present]
        ordered += sorted(present.difference(ordered))

        images = {}
        for name in ordered:
            path = safe_path(self.upload_dir, name)
            if not os.path.isfile(path):
                continue
            with open(path, 'rb') as f:
                images[name] = f.read()
        return images

    # ------------------------------------------------------------------
    # Processed results
    # ------------------------------------------------------------------

    def set_processed_results(self, results: Iterable[ProcessedResult]):
        """Replace all processed pairs with `results` in a single locked write."""
        targets = []
        for result in results:
            targets.append((
                safe_path(self.processed_dir, result.filename),
                safe_path(self.processed_dir, caption_filename(result.filename)),
                result,
            ))

        with self._lock:
            self._clear_dir(self.processed_dir)
            for image_path, caption_path, result in targets:
                with open(image_path, 'wb') as f:
                    f.write(result.image_bytes)
                with open(caption_path, 'w', encoding='utf-8') as f:
                    f.write(result.caption)

        logging.info(f"💾 Saved {len(targets)} processed image/caption pairs")

    def get_processed_results(self) -> List[ProcessedResult]:
        results = []
        for name in sorted(os.listdir(self.processed_dir)):
            if not name.lower().endswith(ALLOWED_EXTENSIONS):
                continue
            image_path = safe_path(self.processed_dir, name)
            caption_path = safe_path(self.processed_dir, caption_filename(name))

            with open(image_path, 'rb') as f:
                image_bytes = f.read()
            caption = ""
            if os.path.exists(caption_path):
                with open(caption_path, 'r', encoding='utf-8') as f:
                    caption = f.read()

            results.append(ProcessedResult(name, caption, image_bytes))
        return results

    # ------------------------------------------------------------------
    # Log
    # ------------------------------------------------------------------

    def add_log(self, message: str):
        line = f"[{datetime.now().strftime('%H:%M:%S')}] {sanitize_log_message(message)}\n"
        with self._lock:
            with open(self.log_file, 'a', encoding='utf-8') as f:
                f.write(line)

    def get_logs(self) -> str:
        if not os.path.exists(self.log_file):
            return ""
        with open(self.log_file, 'r', encoding='utf-8') as f:
            return f.read()

    def clear_logs(self):
        with self._lock:
            if os.path.exists(self.log_file):
                os.remove(self.log_file)

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def clear_all(self):
        """Remove all uploads, processed results and the log."""
        with self._lock:
            removed = self._clear_dir(self.upload_dir) + self._clear_dir(self.processed_dir)
            if os.path.exists(self.log_file):
                os.remove(self.log_file)
        logging.info(f"🗑️  Cleared {removed} stored files")
        return removed

    def cleanup_old_files(self, days=CLEANUP_RETENTION_DAYS) -> int:
        """Delete stored files whose modification time is older than `days`."""
        cutoff = time.time() - days * 24 * 60 * 60
        removed = 0

        with self._lock:
            for directory in (self.upload_dir, self.processed_dir):
                for name in os.listdir(directory):
                    if name == UPLOAD_ORDER_FILE:
                        continue
                    path = safe_path(directory, name)
                    if os.path.isfile(path) and os.path.getmtime(path) < cutoff:
                        os.remove(path)
                        removed += 1

        logging.info(f"🧹 Removed {removed} files older than {days} days")
        return removed
