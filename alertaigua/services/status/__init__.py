"""
Status Service

Cached status-page polling and the aggregated diagnostics report.
"""
