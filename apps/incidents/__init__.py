"""
Site Incidents app.

Groups satellite fire detections (SiteAlerts) at the same site into a single
SiteIncident and closes incidents that have gone quiet:

- repository: storage port over incidents and alert linkage
- resolver: staleness decisions and failure-isolated batch closure
- services: the per-alert state machine and the periodic sweep
"""
