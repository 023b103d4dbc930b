"""Manila API access for the CSI plugin."""
