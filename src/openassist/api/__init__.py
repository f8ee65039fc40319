"""HTTP surface for OpenAssist."""
