"""HTTP routes of the control plane."""
