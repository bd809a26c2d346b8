"""
Monitoring - Prometheus metrics.
"""
