"""
AlertAigua Services

- water  - Fetch cycle, retry, alarm engine, availability, process wiring
- notify - Message catalog, Pushsafer transport, alert dispatch
- status - Status page polling and aggregated diagnostics
- config - Configuration validation
"""

__version__ = "1.0.0"
