"""
Workflow & SLA Module
=====================

Bounded Context for configuration-driven workflows and per-state SLA tracking.

Responsibilities:
- Compute and execute gated transitions for CAPs, findings and reviews
- Open, pause, resume, extend and close SLA trackers on state changes
- Detect breaches and approaching breaches in a background sweep
- Apply escalation rules and hand events to a notification sink
- Hot-reload workflow definitions from YAML via watchdog
"""

__version__ = "1.0.0"
