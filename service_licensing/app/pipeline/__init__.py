"""
Licensing pipeline: stages, orchestrator and success post-processing.
"""
