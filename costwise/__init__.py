"""
costwise - Kubernetes Workload Cost, Waste & Optimization Engine

This package estimates the monthly cost of Kubernetes workload manifests,
detects waste by comparing allocations with observed usage, and produces
safer right-sized copies of workloads with risk assessments.
"""

__version__ = "1.0.0"
__author__ = "costwise Team"
