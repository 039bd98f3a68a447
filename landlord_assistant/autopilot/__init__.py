"""
Autopilot - gated automatic replies with an auditable decision log
"""
