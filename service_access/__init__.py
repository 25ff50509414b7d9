"""Access service package."""
