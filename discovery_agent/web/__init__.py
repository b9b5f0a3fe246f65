"""REST control plane."""
