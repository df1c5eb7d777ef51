"""ResQ Orchestrator - incident-response pipeline with protocol-grounded dispatch."""

__version__ = "0.1.0"
