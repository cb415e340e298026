"""
On-device assistant runtime.

This package contains modular pieces for capturing the foreground UI,
resolving model targets to elements, parsing model replies into action plans,
executing them against a device backend, and coordinating one turn at a time.
"""
