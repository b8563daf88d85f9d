"""
Speech output

Speaks reminder tasks aloud. ``speak()`` starts playback and returns a
``threading.Event`` that is set when playback ends (normally, on error, or
after ``stop()``).
"""

import subprocess
import threading
from typing import Optional

from vocalizeit.errors import SpeechError
from vocalizeit.logger import get_logger


class SpeechService:
    """Interface for text-to-speech backends."""

    def speak(self, text: str, rate: Optional[float] = None,
              pitch: Optional[float] = None) -> threading.Event:
        raise NotImplementedError

    def stop(self):
        raise NotImplementedError


class EspeakSpeech(SpeechService):
    """espeak-ng subprocess backend.

    ``rate`` and ``pitch`` are relative (1.0 = engine default) and are mapped
    onto espeak's words-per-minute and 0-99 pitch scales.
    """

    BASE_WPM = 175
    BASE_PITCH = 50

    def __init__(self, config):
        self.config = config
        self.logger = get_logger(__name__, config)
        self.command = config.get("speech.command", "espeak-ng")
        self.language = config.get("speech.language", "en")
        self.rate = config.get("speech.rate", 0.8)
        self.pitch = config.get("speech.pitch", 1.0)
        self._proc: Optional[subprocess.Popen] = None
        self._lock = threading.Lock()

    def speak(self, text: str, rate: Optional[float] = None,
              pitch: Optional[float] = None) -> threading.Event:
        rate = self.rate if rate is None else rate
        pitch = self.pitch if pitch is None else pitch
        wpm = max(80, int(self.BASE_WPM * rate))
        pitch_value = min(99, max(0, int(self.BASE_PITCH * pitch)))

        cmd = [self.command, "-v", self.language, "-s", str(wpm), "-p", str(pitch_value), text]
        with self._lock:
            try:
                proc = subprocess.Popen(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
            except OSError as e:
                raise SpeechError(f"Cannot start {self.command}: {e}") from e
            self._proc = proc

        done = threading.Event()

        def _wait():
            try:
                proc.wait()
            finally:
                done.set()

        threading.Thread(target=_wait, daemon=True, name="speech-wait").start()
        self.logger.debug(f"Speaking: '{text}' (wpm={wpm}, pitch={pitch_value})")
        return done

    def stop(self):
        with self._lock:
            proc, self._proc = self._proc, None
        if proc and proc.poll() is None:
            proc.terminate()
