"""Video upload and transcode requests."""
