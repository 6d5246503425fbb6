"""Video transcoding job orchestrator."""
