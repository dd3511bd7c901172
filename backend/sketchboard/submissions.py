import threading
import time
import uuid
from typing import Any, Optional, Tuple

from .schemas import Submission

SKETCH_PREFIX = ("sketch",)


class SubmissionError(Exception):
    """A submission body that cannot be accepted."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class MonotonicClock:
    """Wall-clock milliseconds that never go backwards."""

    def __init__(self, source=time.time):
        self._source = source
        self._last = 0
        self._lock = threading.Lock()

    def now_ms(self) -> int:
        with self._lock:
            now = int(self._source() * 1000)
            self._last = max(self._last, now)
            return self._last


def parse_submission(data: Any) -> Tuple[str, Optional[str]]:
    """Validate a decoded request body and return ``(embed, creator)``."""
    if not isinstance(data, dict):
        raise SubmissionError("Request body must be a JSON object.")

    embed = data.get("embed")
    if not isinstance(embed, str) or not embed:
        raise SubmissionError("Missing or invalid 'embed' field.")

    creator = data.get("creator")
    if creator is not None and not isinstance(creator, str):
        raise SubmissionError("Invalid 'creator' field.")

    return embed, creator or None


def new_submission(embed: str, creator: Optional[str], clock: MonotonicClock) -> Submission:
    return Submission(
        id=str(uuid.uuid4()),
        embed=embed,
        creator=creator,
        timestamp=clock.now_ms(),
    )


def sketch_key(submission_id: str) -> Tuple[str, str]:
    return SKETCH_PREFIX + (submission_id,)


def newest_first(records):
    # Storage order is unspecified, so always sort before returning
    return sorted(records, key=lambda record: record.get("timestamp", 0), reverse=True)
