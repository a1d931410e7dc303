"""
Background audio playback with cooperative cancellation.

At most one playback worker exists per controller.  ``start()`` stops any
current playback first; ``stop()`` cancels the worker's token and joins the
worker, so no playback work outlives a ``stop()`` call.

    IDLE -> PLAYING -> STOPPING -> IDLE

Decoding and audio output live behind the ``AudioBackend`` protocol.  The
worker drives the backend one ``step()`` at a time and checks its token
between steps.
"""

import enum
import logging
import os
import threading
import time

from typing_extensions import Protocol

logger = logging.getLogger(__name__)


class CancelToken:
    """A cancellation flag guarded by its own lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._cancelled = False

    def cancel(self) -> None:
        with self._lock:
            self._cancelled = True

    @property
    def cancelled(self) -> bool:
        with self._lock:
            return self._cancelled


class AudioStream(Protocol):
    def step(self) -> bool:
        """Advance playback a little.  Returns False once the audio has ended."""
        ...

    def close(self) -> None: ...


class AudioBackend(Protocol):
    def open(self, filepath: str) -> AudioStream: ...


# ---------------------------------------------------------------------------
# pygame backend
# ---------------------------------------------------------------------------


class _PygameStream:
    def __init__(self, music, poll_interval: float):
        self._music = music
        self._poll_interval = poll_interval

    def step(self) -> bool:
        time.sleep(self._poll_interval)
        return bool(self._music.get_busy())

    def close(self) -> None:
        self._music.stop()
        self._music.unload()


class PygameBackend:
    """Plays files through ``pygame.mixer.music``."""

    def __init__(self, poll_interval: float = 0.05):
        self.poll_interval = poll_interval

    def open(self, filepath: str) -> _PygameStream:
        os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")
        import pygame

        if not pygame.mixer.get_init():
            pygame.mixer.init()
        pygame.mixer.music.load(filepath)
        pygame.mixer.music.play()
        return _PygameStream(pygame.mixer.music, self.poll_interval)


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------


class PlaybackState(enum.Enum):
    IDLE = "idle"
    PLAYING = "playing"
    STOPPING = "stopping"


class PlaybackController:
    """Owns the single playback worker of a client process."""

    def __init__(self, backend: AudioBackend | None = None):
        self._backend = backend or PygameBackend()
        # Serializes start/stop callers; held across the join in stop().
        self._control = threading.Lock()
        # Guards the fields below; never held while joining.
        self._state_lock = threading.Lock()
        self._state = PlaybackState.IDLE
        self._token: CancelToken | None = None
        self._worker: threading.Thread | None = None
        self.file_path: str | None = None
        self.last_error: Exception | None = None

    @property
    def state(self) -> PlaybackState:
        with self._state_lock:
            return self._state

    @property
    def is_playing(self) -> bool:
        return self.state is PlaybackState.PLAYING

    def start(self, file_path: str) -> None:
        with self._control:
            self._stop_locked()
            token = CancelToken()
            worker = threading.Thread(
                target=self._run,
                args=(file_path, token),
                name="cadence-playback",
                daemon=True,
            )
            with self._state_lock:
                self._token = token
                self._worker = worker
                self._state = PlaybackState.PLAYING
                self.file_path = file_path
                self.last_error = None
            worker.start()
            logger.info("Playing %s", file_path)

    def stop(self) -> None:
        """Cancel playback and block until the worker has exited."""
        with self._control:
            self._stop_locked()

    def _stop_locked(self) -> None:
        with self._state_lock:
            worker, token = self._worker, self._token
            if worker is None:
                return
            self._state = PlaybackState.STOPPING

        token.cancel()
        worker.join()

        with self._state_lock:
            self._worker = None
            self._token = None
            self._state = PlaybackState.IDLE
        logger.info("Stopped %s", self.file_path)

    def _run(self, file_path: str, token: CancelToken) -> None:
        try:
            stream = self._backend.open(file_path)
            try:
                while not token.cancelled:
                    if not stream.step():
                        break
            finally:
                stream.close()
        except Exception as e:
            logger.error("Playback of %s failed: %s", file_path, e)
            self.last_error = e
        finally:
            with self._state_lock:
                # Natural end of the track; a concurrent stop() resets the rest.
                if self._token is token and self._state is PlaybackState.PLAYING:
                    self._state = PlaybackState.IDLE
