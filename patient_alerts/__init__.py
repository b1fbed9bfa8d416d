"""Alert evaluation engine for patient vital-sign streams.

This package contains the record store, the clinical rule strategies and the
annotation pipeline that turns raw rule firings into deliverable alerts.
"""
