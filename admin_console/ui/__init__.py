"""Terminal views for the admin console."""
