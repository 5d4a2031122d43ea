"""Alumni mentorship call-session lifecycle and reconciliation."""
