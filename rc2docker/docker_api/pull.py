"""
Docker image pull
Streams POST /images/create and reports aggregated download progress
"""

import json
import logging
import threading
import time
from typing import Callable, Dict, List, Optional

from .exceptions import InternalError, InvalidJson, PullFailed
from .http_parser import LineBuffer
from .response_handler import CompleteMessage, DataMessage, ErrorMessage, Message

logger = logging.getLogger(__name__)

NOTIFY_INTERVAL = 0.1


class PullProgress:
    """Download progress of one image, or of all images when name is 'all'"""

    def __init__(self, name: str, est_size: int):
        self.name = name
        self.est_size = est_size
        self.current_size = 0
        self.extracting = False
        self.complete = False

    def __repr__(self):
        return f"<PullProgress: {self.name} {self.current_size}/{self.est_size}>"

    def copy(self) -> 'PullProgress':
        other = PullProgress(self.name, self.est_size)
        other.current_size = self.current_size
        other.extracting = self.extracting
        other.complete = self.complete
        return other

    @property
    def percent(self) -> int:
        if self.est_size <= 0:
            return 100 if self.complete else 0
        return min(100, int(self.current_size * 100 / self.est_size))


class LayerProgress:
    """Download progress of a single layer"""

    def __init__(self, layer_id: str):
        self.id = layer_id
        self.final_size: Optional[int] = None
        self.current_size = 0
        self.complete = False

    def __repr__(self):
        return f"<LayerProgress: {self.id} {self.current_size}/{self.final_size}>"

    @property
    def contribution(self) -> int:
        if self.complete and self.final_size is not None:
            return self.final_size
        return self.current_size


ProgressCallback = Callable[[PullProgress], None]


class PullOperation:
    """
    Pull one image and track its progress

    The daemon sends one JSON object per line. Layer events update
    LayerProgress entries and the image total is recomputed from them,
    never going backwards. Progress callbacks are throttled to one per
    NOTIFY_INTERVAL, except for the first and the final one.
    """

    def __init__(self, http_client, image_name: str, est_size: int,
                 progress_callback: Optional[ProgressCallback] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.http_client = http_client
        self.image_name = image_name
        self.progress = PullProgress(image_name, est_size)
        self.progress_callback = progress_callback
        self.clock = clock
        self.layers: Dict[str, LayerProgress] = {}
        self.error: Optional[Exception] = None
        self._lines = LineBuffer()
        self._last_notify: Optional[float] = None
        self._finished = threading.Event()

    def __repr__(self):
        return f"<PullOperation: {self.image_name}>"

    def pull(self) -> PullProgress:
        """
        Run the pull to completion

        Returns:
            Final progress, marked complete

        Raises:
            PullFailed: If the daemon reports an error
            DockerException: On transport or status errors
        """
        logger.info(f"Pulling {self.image_name}")
        conn = self.http_client.stream(
            'POST', '/images/create', self.handle_message, params={'fromImage': self.image_name})
        try:
            self._finished.wait()
        finally:
            if not conn.closed:
                conn.close()
        if self.error is not None:
            raise self.error
        logger.info(f"Pulled {self.image_name}")
        return self.progress

    def handle_message(self, message: Message):
        """Process one message from the pull stream"""
        if self._finished.is_set():
            return
        try:
            if isinstance(message, DataMessage):
                for line in self._lines.feed(message.data):
                    self.handle_line(line)
            elif isinstance(message, CompleteMessage):
                for line in self._lines.flush():
                    self.handle_line(line)
                self._complete()
            elif isinstance(message, ErrorMessage):
                self._finish(message.error)
        except (PullFailed, InvalidJson) as e:
            self._finish(e)

    def handle_line(self, line: bytes):
        """Apply one status line to the layer table"""
        try:
            data = json.loads(line.decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise InvalidJson(f"Invalid pull status: {e}")
        if not isinstance(data, dict):
            raise InvalidJson(f"Invalid pull status: {data!r}")
        if 'error' in data:
            raise PullFailed(f"Pull of {self.image_name} failed: {data['error']}")

        status = str(data.get('status', '')).lower()
        layer_id = data.get('id')
        if status == 'pulling fs layer':
            self.layers[layer_id] = LayerProgress(layer_id)
        elif status == 'downloading':
            layer = self.layers.setdefault(layer_id, LayerProgress(layer_id))
            detail = data.get('progressDetail') or {}
            try:
                if layer.final_size is None and detail.get('total'):
                    layer.final_size = int(detail['total'])
                if 'current' in detail:
                    layer.current_size = int(detail['current'])
            except (ValueError, TypeError, AttributeError) as e:
                raise InvalidJson(f"Invalid progress detail {detail!r}: {e}")
        elif status == 'download complete':
            layer = self.layers.setdefault(layer_id, LayerProgress(layer_id))
            layer.complete = True
        elif status == 'extracting':
            self.progress.extracting = True
        else:
            return
        self._update_total()
        self._notify()

    @property
    def total_downloaded(self) -> int:
        return sum(layer.contribution for layer in self.layers.values())

    def _update_total(self):
        total = self.total_downloaded
        if total > self.progress.current_size:
            self.progress.current_size = total

    def _notify(self, force: bool = False):
        if self.progress_callback is None:
            return
        now = self.clock()
        if not force and self._last_notify is not None and now - self._last_notify < NOTIFY_INTERVAL:
            return
        self._last_notify = now
        self.progress_callback(self.progress.copy())

    def _complete(self):
        if self.progress.current_size == 0:
            self.progress.current_size = self.progress.est_size
        self.progress.complete = True
        self._notify(force=True)
        self._finish()

    def _finish(self, error: Optional[Exception] = None):
        if error is not None:
            logger.error(f"Pull of {self.image_name} failed: {error}")
            self.error = error
        self._finished.set()


def aggregate_progress(already_downloaded: int, progress: PullProgress, total_size: int) -> PullProgress:
    """Progress of all pulls given the bytes of earlier pulls and the current one"""
    combined = PullProgress('all', total_size)
    combined.current_size = already_downloaded + progress.current_size
    combined.extracting = progress.extracting
    return combined


def pull_all(http_client, images: List, progress_callback: Optional[ProgressCallback] = None,
             clock: Callable[[], float] = time.monotonic,
             operation_factory: Optional[Callable[..., PullOperation]] = None) -> PullProgress:
    """
    Pull images one after the other

    Args:
        http_client: DockerHTTPClient used for the streams
        images: DockerImageInfo entries to pull
        progress_callback: Receives aggregated progress named 'all'
        clock: Time source for throttling
        operation_factory: Builds the PullOperation for each image

    Returns:
        Aggregated final progress
    """
    factory = operation_factory or PullOperation
    total_size = sum(info.est_size for info in images)
    result = PullProgress('all', total_size)
    already_downloaded = 0

    for info in images:
        offset = already_downloaded

        def forward(progress, offset=offset):
            if progress_callback is not None:
                progress_callback(aggregate_progress(offset, progress, total_size))

        operation = factory(http_client, info.full_name, info.est_size, forward, clock)
        final = operation.pull()
        if not final.complete:
            raise InternalError(f"Pull of {info.full_name} ended without completing")
        already_downloaded += final.current_size

    result.current_size = already_downloaded
    result.complete = True
    if progress_callback is not None:
        progress_callback(result.copy())
    return result
