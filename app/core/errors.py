from __future__ import annotations


class ProcessingError(RuntimeError):
    code = "processing_failed"
    status_code = 500

    def __init__(self, message: str, *, code: str | None = None, status_code: int | None = None):
        super().__init__(message)
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code

    def to_detail(self) -> dict[str, str]:
        return {"code": self.code, "message": str(self)}


class InsufficientCredit(ProcessingError):
    code = "insufficient_credit"
    status_code = 402


class ExtractionFailed(ProcessingError):
    code = "extraction_failed"
    status_code = 502


class NoUsableContent(ProcessingError):
    code = "no_usable_content"
    status_code = 422
