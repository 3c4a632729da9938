from __future__ import annotations


class ScimError(Exception):
    """Base for errors rendered as SCIM error envelopes."""

    status_code: int = 500

    def __init__(
        self,
        detail: str,
        *,
        scim_type: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(detail)
        if status_code is not None:
            self.status_code = int(status_code)
        self.detail = str(detail)
        self.scim_type = scim_type


class ScimValidationError(ScimError):
    """Caller-fixable request problem (400)."""

    status_code = 400

    def __init__(self, detail: str, *, scim_type: str | None = "invalidValue") -> None:
        super().__init__(detail, scim_type=scim_type)


class ScimUnauthorizedError(ScimError):
    status_code = 401

    def __init__(self, detail: str = "Unauthorized", *, scim_type: str | None = None) -> None:
        super().__init__(detail, scim_type=scim_type)


class ScimNotFoundError(ScimError):
    status_code = 404

    def __init__(self, detail: str = "Resource not found") -> None:
        super().__init__(detail)


class ScimConflictError(ScimError):
    """Uniqueness violation on an identity attribute (409)."""

    status_code = 409

    def __init__(self, detail: str) -> None:
        super().__init__(detail, scim_type="uniqueness")


class ScimStoreError(ScimError):
    """Any other persistence failure. The detail is deliberately opaque."""

    status_code = 500

    def __init__(self) -> None:
        super().__init__("Internal server error")


class UnsupportedFilterError(ValueError):
    """Filter expression outside the supported `<attr> eq <value>` slice."""


class PathSyntaxError(ValueError):
    """PATCH path that does not match the supported path grammar."""
