"""Error taxonomy for the model cascade, chat sync and report writes."""
from __future__ import annotations
from typing import List, Optional


class ModelError(Exception):
    """A single model attempt failed. Subclasses decide what the cascade does next."""

    def __init__(self, model_id: str, message: str = "", cause: Optional[BaseException] = None):
        self.model_id = model_id
        self.cause = cause
        super().__init__(f"{model_id}: {message}" if message else model_id)


class ModelUnavailable(ModelError):
    """404-class: model does not exist / is not served. Excluded for the session."""


class ModelThrottled(ModelError):
    """429-class: quota exceeded or rate limited. Excluded, then jittered backoff."""


class ModelTransientError(ModelError):
    """5xx, network, timeout or anything unclassified. Skipped without exclusion."""


class MalformedResponse(ModelError):
    """Provider answered with an unknown envelope or empty content."""


class AllModelsExhausted(Exception):
    """Every candidate failed, including the self-heal pass. Callers fall back locally."""

    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__(f"All models exhausted: {'; '.join(errors) or 'no candidates'}")


class SyncWriteFailure(Exception):
    """A chat write (append / summary / read receipts / block) did not reach the store."""

    def __init__(self, chat_id: str, stage: str, cause: Optional[BaseException] = None):
        self.chat_id = chat_id
        self.stage = stage
        self.cause = cause
        super().__init__(f"chat={chat_id} stage={stage} err={cause}")


class ChatPermissionError(Exception):
    """Sender is blocked, not a participant, or tried to undo someone else's block."""

    def __init__(self, code: str):
        self.code = code
        super().__init__(code)


class ChatNotFound(LookupError):
    pass


class ReportNotFound(LookupError):
    pass


class InvalidTransition(ValueError):
    pass
