# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

from .service import SnapshotService
__all__ = ["SnapshotService"]
