"""
Core modules for AI Incident Guard.

Risk scoring, anomaly detection, the scheduled detection job, and the
incident and remediation lifecycles.
"""
