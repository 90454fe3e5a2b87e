"""
Orchestration layer: image publishing, manifest rendering, rollout and the
pipeline driver that sequences every stage.
"""
