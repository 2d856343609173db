"""
Error kinds raised by the API.

Each kind is an HTTPException with a fixed status code so routes can raise
them directly, the same way they would raise HTTPException. main.py renders
all of them as {"error": detail}.
"""

from fastapi import HTTPException


class BadRequestError(HTTPException):
    def __init__(self, detail: str = "Bad request"):
        super().__init__(status_code=400, detail=detail)


class AuthenticationError(HTTPException):
    def __init__(self, detail: str = "Authentication required"):
        super().__init__(status_code=401, detail=detail)


class PermissionDeniedError(HTTPException):
    def __init__(self, detail: str = "Insufficient permissions"):
        super().__init__(status_code=403, detail=detail)


class NotFoundError(HTTPException):
    def __init__(self, detail: str = "Not found"):
        super().__init__(status_code=404, detail=detail)


class ConflictError(HTTPException):
    def __init__(self, detail: str = "Conflict"):
        super().__init__(status_code=409, detail=detail)


class RateLimitError(HTTPException):
    def __init__(self, detail: str = "Too many requests, please try again later.", retry_after: int = 0):
        headers = {"Retry-After": str(retry_after)} if retry_after else None
        super().__init__(status_code=429, detail=detail, headers=headers)
