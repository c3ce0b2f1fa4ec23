"""Coordinator <-> compute worker message protocol.

Messages are plain dicts with a "label" key plus label-specific payload,
sent over a multiprocessing Pipe.  A worker has at most one outstanding
request; every request ends with exactly one terminal reply, possibly
preceded by `debug` replies.  A `progress` reply suspends the request until
the coordinator answers `continue` (resume) or `stop` (abort).

Requests                              Terminal replies
--------------------------------      ------------------------------------
initialize{config, catalog, seed?}    initialized{}
pass{data}                            received{}
run{input}                            complete{result} | progress{progress}
continue{}                            complete{result} | progress{progress}
stop{}                                stopped{}

Any request may instead end with error{kind, message} when the handler
raised.
"""

from __future__ import annotations

# Requests
INITIALIZE = "initialize"
PASS = "pass"
RUN = "run"
CONTINUE = "continue"
STOP = "stop"

# Replies
INITIALIZED = "initialized"
RECEIVED = "received"
PROGRESS = "progress"
COMPLETE = "complete"
STOPPED = "stopped"
DEBUG = "debug"
ERROR = "error"

REQUEST_LABELS = frozenset({INITIALIZE, PASS, RUN, CONTINUE, STOP})
REPLY_LABELS = frozenset({INITIALIZED, RECEIVED, PROGRESS, COMPLETE, STOPPED, DEBUG, ERROR})


class ProtocolError(RuntimeError):
    """Unexpected message label or broken worker channel."""


class WorkerError(RuntimeError):
    """A worker raised while handling a request."""

    def __init__(self, kind: str, message: str, worker: int | None = None) -> None:
        self.kind = kind
        self.worker = worker
        super().__init__(f"[worker {worker}] {kind}: {message}")


class SearchCancelled(Exception):
    """The search was cancelled by the user; not a computation failure."""


def message(label: str, **payload) -> dict:
    return {"label": label, **payload}


def expect_label(msg: dict, *labels: str) -> str:
    label = msg.get("label") if isinstance(msg, dict) else None
    if label not in labels:
        raise ProtocolError(f"WORKER RESPONSE LABEL ERROR: got {label!r}, expected one of {labels}")
    return label
