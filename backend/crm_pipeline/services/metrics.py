"""Prometheus metrics."""

from prometheus_client import Counter, Histogram

CRM_API_REQUESTS = Counter("crm_api_requests_total", "Upstream CRM API calls", ["endpoint", "outcome"])
CRM_API_LATENCY = Histogram("crm_api_request_seconds", "Upstream CRM API call duration", ["endpoint"])
BOARD_BUILDS = Counter("pipeline_board_builds_total", "Pipeline board builds", ["outcome"])
SKIPPED_RECORDS = Counter("crm_records_skipped_total", "Upstream records dropped by validation", ["endpoint"])
