"""Classification of observed network responses into protocol signals.

The remote service exposes no status endpoint for uploads. Instead, the
browser session sees a stream of JSON responses, most of them unrelated. Two
shapes matter:

* an *initiation* acknowledgment carrying the transfer id and size ceiling,
* a *completion* acknowledgment describing the uploaded recording once the
  service starts processing it.

Everything about those shapes lives in this module so a change on the remote
side only requires a new :class:`ResponseClassifier`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Protocol, Union

from .transport import ObservedResponse


@dataclass(frozen=True, slots=True)
class Unmatched:
    """A response that carries no protocol meaning."""


@dataclass(frozen=True, slots=True)
class Initiation:
    """The remote service accepted the file and started receiving it."""

    transfer_id: str
    size_limit: int


@dataclass(frozen=True, slots=True)
class Completion:
    """The remote service describes the uploaded recording."""

    remote_id: str
    remote_url: str
    state: str
    transfer_id: Optional[str] = None

    @property
    def has_reference(self) -> bool:
        """Return whether the recording link is usable."""
        return bool(self.remote_url.strip())


Signal = Union[Unmatched, Initiation, Completion]

UNMATCHED = Unmatched()


class ResponseClassifier(Protocol):
    """Map an observed response onto a protocol signal."""

    def classify(self, response: ObservedResponse) -> Signal:
        ...


class GrainResponseClassifier:
    """Recognize the upload acknowledgments emitted by the Grain web app."""

    def __init__(self, completion_states: Iterable[str]) -> None:
        self._completion_states = {state.strip().lower() for state in completion_states}

    def classify(self, response: ObservedResponse) -> Signal:
        if response.status >= 400:
            return UNMATCHED
        document = response.body
        if not isinstance(document, Mapping):
            return UNMATCHED
        for candidate in _candidates(document):
            signal = self._classify_document(candidate)
            if not isinstance(signal, Unmatched):
                return signal
        return UNMATCHED

    def _classify_document(self, document: Mapping[str, Any]) -> Signal:
        recording = document.get("recording")
        if isinstance(recording, Mapping):
            return self._completion(recording)

        upload_id = document.get("upload_id")
        max_size = document.get("max_size")
        if _non_empty_str(upload_id) and _positive_int(max_size):
            return Initiation(transfer_id=upload_id, size_limit=max_size)
        return UNMATCHED

    def _completion(self, recording: Mapping[str, Any]) -> Signal:
        remote_id = recording.get("id")
        state = recording.get("state")
        url = recording.get("url")
        if not _non_empty_str(remote_id) or not isinstance(state, str):
            return UNMATCHED
        if state.strip().lower() not in self._completion_states:
            return UNMATCHED
        if url is not None and not isinstance(url, str):
            return UNMATCHED
        transfer_id = recording.get("upload_id")
        return Completion(
            remote_id=remote_id,
            remote_url=url or "",
            state=state,
            transfer_id=transfer_id if _non_empty_str(transfer_id) else None,
        )


def _candidates(document: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    found = [document]
    nested = document.get("data")
    if isinstance(nested, Mapping):
        found.append(nested)
    return found


def _non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


__all__ = [
    "Signal",
    "Unmatched",
    "Initiation",
    "Completion",
    "UNMATCHED",
    "ResponseClassifier",
    "GrainResponseClassifier",
]
