"""Identity resolution and reconciliation for cinema projector service records."""
