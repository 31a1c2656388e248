from .body_guard import RejectHugeOrBase64  # noqa: F401
