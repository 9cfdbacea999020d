"""Client-side telemetry pipeline for the Lungua patient monitor.

This package contains the device sessions, rolling telemetry buffers,
anomaly scoring and caregiver escalation logic, isolated from any
presentation layer so it can be driven by a dashboard, a CLI or tests.
"""

__version__ = "0.3.0"
