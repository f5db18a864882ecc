"""Reference review service for the MTR workflow."""
