"""Stage-deadline scanning, urgency classification and persistence."""
