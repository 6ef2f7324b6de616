"""Core HR module — departments, employees and the directory lookups."""
