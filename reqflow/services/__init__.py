"""Services around the workflow engine: audit trail, rule administration, notifications."""
