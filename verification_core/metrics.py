# -*- coding: utf-8 -*-
"""Prometheus metrics (multiprocess-aware registry)."""

from __future__ import annotations

import os
import time

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

if "PROMETHEUS_MULTIPROC_DIR" in os.environ:
    from prometheus_client import multiprocess

    PROM_REGISTRY = CollectorRegistry()
    multiprocess.MultiProcessCollector(PROM_REGISTRY)
else:
    PROM_REGISTRY = CollectorRegistry()

REQ_COUNTER = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
    registry=PROM_REGISTRY,
)
REQ_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path", "status"],
    registry=PROM_REGISTRY,
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10),
)
APP_START_TIME = Gauge(
    "app_start_time_seconds",
    "App start time as a Unix timestamp",
    registry=PROM_REGISTRY,
)
RECONCILE_OUTCOMES = Counter(
    "verification_reconcile_total",
    "Reconciled verified-account records by outcome",
    ["zk_valid", "signature_valid"],
    registry=PROM_REGISTRY,
)
SELF_HEAL_TOTAL = Counter(
    "verification_self_heal_total",
    "Status endpoint self-heal attempts by result",
    ["result"],
    registry=PROM_REGISTRY,
)

APP_START_TIME.set(time.time())
