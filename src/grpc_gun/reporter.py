"""
Sample Reporter - turns one shot's outcome into one load-test sample.

Status codes are deliberately coarse and do not mirror gRPC status codes:

    0    method unknown, or the call failed at the transport/RPC layer
    400  payload did not fit the method's input schema (nothing was sent)
    200  the target answered with a response
"""

import threading
from collections import Counter
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from google.protobuf.message import Message

from .errors import MarshalError
from .metrics import Timer

CODE_NO_RESPONSE = 0
CODE_OK = 200
CODE_BAD_REQUEST = 400


@dataclass(frozen=True)
class Sample:
    """Outcome record of a single shot."""
    tag: str
    elapsed: float  # seconds
    status_code: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def classify(outcome: Optional[object]) -> int:
    """
    Map a shot outcome to a sample status code.

    ``outcome`` is the response message, or the RequestError that ended the
    shot. Anything that is neither a response nor a marshal failure counts
    as "no response".
    """
    if isinstance(outcome, MarshalError):
        return CODE_BAD_REQUEST
    if isinstance(outcome, Message):
        return CODE_OK
    return CODE_NO_RESPONSE


class PendingSample:
    """A sample whose clock started at acquisition and stops at classification."""

    def __init__(self, tag: str):
        self.tag = tag
        self._timer = Timer()
        self._timer.start()

    def complete(self, outcome: Optional[object]) -> Sample:
        code = classify(outcome)
        self._timer.stop()
        return Sample(tag=self.tag, elapsed=max(self._timer.duration, 0.0), status_code=code)


def acquire(tag: str) -> PendingSample:
    return PendingSample(tag)


@runtime_checkable
class Aggregator(Protocol):
    """Sink for samples. Called concurrently by every shooting worker."""

    def report(self, sample: Sample) -> None:
        ...


class SampleCollector:
    """
    Thread-safe in-memory aggregator.

    Usage:
        collector = SampleCollector()
        await gun.bind(collector)
        ...
        collector.count(200)
    """

    def __init__(self):
        self._samples: List[Sample] = []
        self._lock = threading.Lock()
        self._codes: Counter = Counter()

    def report(self, sample: Sample) -> None:
        with self._lock:
            self._samples.append(sample)
            self._codes[sample.status_code] += 1

    @property
    def samples(self) -> List[Sample]:
        with self._lock:
            return list(self._samples)

    def count(self, code: Optional[int] = None) -> int:
        """Number of samples, optionally only those with status ``code``."""
        with self._lock:
            if code is None:
                return len(self._samples)
            return self._codes[code]

    def summary(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "total": len(self._samples),
                "by_code": {str(code): n for code, n in sorted(self._codes.items())},
            }
