"""Convergence primitives for hosted Kubernetes control planes."""
