"""
Post-rollout verification and failure diagnostics.
"""
