from __future__ import annotations


class ServiceError(RuntimeError):
    """Business-rule failure raised by module services; blueprints turn it into JSON."""

    status = 400

    def __init__(self, message: str, *, status: int | None = None, code: str | None = None, details: dict | None = None):
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status
        self.code = code
        self.details = details or {}

    def to_dict(self) -> dict:
        out: dict = {"error": self.message}
        if self.code:
            out["code"] = self.code
        out.update(self.details)
        return out


class ValidationError(ServiceError):
    status = 400

    def __init__(self, errors: list[str] | str, **kwargs):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Invalid input", **kwargs)

    def to_dict(self) -> dict:
        out = super().to_dict()
        out["errors"] = self.errors
        return out


class NotFound(ServiceError):
    status = 404


class Forbidden(ServiceError):
    status = 403

    def __init__(self, message: str = "Forbidden", **kwargs):
        super().__init__(message, **kwargs)


class Conflict(ServiceError):
    status = 409
