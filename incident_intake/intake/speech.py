from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol, Sequence

logger = logging.getLogger(__name__)

UNSUPPORTED_MESSAGE = "Reconocimiento de voz no compatible."
START_FAILED_MESSAGE = "No se pudo iniciar el reconocimiento. Verifique permisos."


class SpeechRecognizer(Protocol):
    """Voice capability of the device the composer runs on."""

    def start(self) -> None:  # pragma: no cover - protocol
        ...

    def stop(self) -> None:  # pragma: no cover - protocol
        ...


@dataclass(slots=True, frozen=True)
class SpeechResult:
    """One recognition segment; non-final segments may still be revised."""

    transcript: str
    is_final: bool = False


def _join(left: str, right: str) -> str:
    if not left or not right:
        return left + right
    if left[-1].isspace() or right[0].isspace():
        return left + right
    return f"{left} {right}"


class SpeechInputAdapter:
    """Accumulate a live transcript into the text composer.

    Each recognition update carries every segment of the current listening
    run, so a revised hypothesis simply replaces the previous one. The
    composer text is the text typed before listening started followed by
    the segments heard so far.
    """

    def __init__(self, recognizer: SpeechRecognizer | None = None) -> None:
        self._recognizer = recognizer
        self._base = ""
        self._heard = ""
        self.listening = False
        self.error: str | None = None

    @property
    def available(self) -> bool:
        return self._recognizer is not None

    @property
    def composer_text(self) -> str:
        return _join(self._base, self._heard)

    def start(self, composer_text: str = "") -> bool:
        """Begin a listening run; failures leave the composer usable."""

        self.error = None
        self._base = composer_text
        self._heard = ""
        if self._recognizer is None:
            self.error = UNSUPPORTED_MESSAGE
            return False
        try:
            self._recognizer.start()
        except (RuntimeError, OSError) as exc:
            logger.warning("Speech recognition could not start: %s", exc)
            self.error = START_FAILED_MESSAGE
            return False
        self.listening = True
        return True

    def feed(self, composer_text: str, results: Sequence[SpeechResult]) -> str:
        """Apply results pushed by a remote recognizer (e.g. the browser)."""

        if not self.listening:
            self.error = None
            self._base = composer_text
            self._heard = ""
            self.listening = True
        return self.on_results(results)

    def on_results(self, results: Sequence[SpeechResult]) -> str:
        heard = ""
        for result in results:
            heard = _join(heard, result.transcript.strip())
        self._heard = heard
        return self.composer_text

    def on_error(self, code: str) -> None:
        logger.info("Speech recognition error: %s", code)
        self.error = f"Error de transcripción: {code}"
        self.listening = False

    def on_end(self) -> str:
        self.listening = False
        return self.composer_text

    def stop(self) -> str:
        if self.listening and self._recognizer is not None:
            self._recognizer.stop()
        return self.on_end()

    def reset(self) -> None:
        self._base = ""
        self._heard = ""
        self.listening = False
        self.error = None
