"""Reliable Message Protocol (RMP)

Stop-and-wait delivery of text messages over UDP, plus the tooling used to
watch it misbehave:
- a sender/receiver pair that retransmits, deduplicates and acknowledges
- an impairment relay that drops and delays packets per direction
- a metrics side channel fed by JSON Lines events over TCP
"""

__all__ = []
