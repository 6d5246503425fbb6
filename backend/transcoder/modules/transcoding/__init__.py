"""Transcoding job orchestration.

Creates transcoding jobs, runs them through the FFmpeg engine on a bounded
worker pool, and tracks their status and progress.
"""
