"""Charts and transcript exports."""
