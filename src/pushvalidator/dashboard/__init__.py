# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Push Chain
# Part of push-validator - see LICENSE

from .model import Dashboard, render_static
from .types import DashboardData, Options
__all__ = ["Dashboard", "DashboardData", "Options", "render_static"]
