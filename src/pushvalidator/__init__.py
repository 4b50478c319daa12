# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

"""Operator CLI for a Push Chain validator node."""

__version__ = "1.4.0"
__all__ = ["__version__"]
