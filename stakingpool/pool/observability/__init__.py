# MIT License
# Copyright (c) 2025 Hashborn

"""Observability module for staking pool monitoring."""

from .metrics import metrics_registry, update_metrics

__all__ = ["metrics_registry", "update_metrics"]
