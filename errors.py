from typing import Any, Dict, Optional


class SafePlateError(Exception):
    """Base for every failure the decision pipeline reports to a caller."""

    default_status: Optional[int] = None

    def __init__(
        self,
        reason: str,
        *,
        status: Optional[int] = None,
        retry_after_seconds: Optional[int] = None,
    ):
        super().__init__(reason)
        self.reason = reason
        self.status = status if status is not None else self.default_status
        self.retry_after_seconds = retry_after_seconds

    def to_payload(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"reason": self.reason}
        if self.status is not None:
            out["status"] = self.status
        if self.retry_after_seconds is not None:
            out["retryAfterSeconds"] = self.retry_after_seconds
        return out


# =========================
# Provider failures
# =========================
class MissingCredentials(SafePlateError):
    pass


class ProviderHttpError(SafePlateError):
    default_status = 502


class ModelNotFound(ProviderHttpError):
    default_status = 404


class RateLimited(ProviderHttpError):
    default_status = 429


# =========================
# Card rejections
# =========================
class CardRejected(SafePlateError):
    """Generator output that cannot be shown to a user."""


class InvalidFormat(CardRejected):
    pass


class ParseFailure(CardRejected):
    pass


class ContentPolicyViolation(CardRejected):
    pass


# =========================
# Auxiliary
# =========================
class TranslationFailure(SafePlateError):
    pass


class OcrFailure(SafePlateError):
    default_status = 503
