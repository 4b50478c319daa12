# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

"""
Coded errors and the exit-code table.

Every failure that leaves a command carries one of the codes below; `main()`
turns it into the process exit status via `code_for_error`.
"""

from __future__ import annotations

from typing import Optional

# ---- Exit codes ----
SUCCESS             = 0
GENERAL_ERROR       = 1
INVALID_ARGS        = 2
PRECONDITION_FAILED = 3
NETWORK_ERROR       = 4
PROCESS_ERROR       = 5
VALIDATION_ERROR    = 6
SYNC_STUCK          = 42

CODE_NAMES = {
    SUCCESS: "Success",
    GENERAL_ERROR: "GeneralError",
    INVALID_ARGS: "InvalidArgs",
    PRECONDITION_FAILED: "PreconditionFailed",
    NETWORK_ERROR: "NetworkError",
    PROCESS_ERROR: "ProcessError",
    VALIDATION_ERROR: "ValidationError",
    SYNC_STUCK: "SyncStuck",
}


class CodedError(Exception):
    """Error with an exit code, a human message and an optional cause."""

    def __init__(self, code: int, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.code = int(code)
        self.message = message
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message}: {self.cause}"
        return self.message

    def __repr__(self) -> str:
        return f"CodedError({CODE_NAMES.get(self.code, self.code)}, {self.message!r})"

    def unwrap(self) -> Optional[BaseException]:
        return self.cause


def new_error(code: int, message: str) -> CodedError:
    return CodedError(code, message)


def wrap_error(code: int, message: str, cause: BaseException) -> CodedError:
    return CodedError(code, message, cause)


def invalid_args_error(message: str, cause: Optional[BaseException] = None) -> CodedError:
    return CodedError(INVALID_ARGS, message, cause)


def precondition_error(message: str, cause: Optional[BaseException] = None) -> CodedError:
    return CodedError(PRECONDITION_FAILED, message, cause)


def network_error(message: str, cause: Optional[BaseException] = None) -> CodedError:
    return CodedError(NETWORK_ERROR, message, cause)


def process_error(message: str, cause: Optional[BaseException] = None) -> CodedError:
    return CodedError(PROCESS_ERROR, message, cause)


def validation_error(message: str, cause: Optional[BaseException] = None) -> CodedError:
    return CodedError(VALIDATION_ERROR, message, cause)


def sync_stuck_error(message: str, cause: Optional[BaseException] = None) -> CodedError:
    return CodedError(SYNC_STUCK, message, cause)


def unwrap(err: Optional[BaseException]) -> Optional[BaseException]:
    if err is None:
        return None
    if isinstance(err, CodedError):
        return err.cause
    return err.__cause__


def code_for_error(err: Optional[BaseException]) -> int:
    if err is None:
        return SUCCESS
    if isinstance(err, CodedError):
        return err.code
    return GENERAL_ERROR


__all__ = [
    "SUCCESS", "GENERAL_ERROR", "INVALID_ARGS", "PRECONDITION_FAILED", "NETWORK_ERROR",
    "PROCESS_ERROR", "VALIDATION_ERROR", "SYNC_STUCK", "CODE_NAMES", "CodedError",
    "new_error", "wrap_error", "invalid_args_error", "precondition_error", "network_error",
    "process_error", "validation_error", "sync_stuck_error", "unwrap", "code_for_error",
]
