"""Transcoding module.

Media inspection with ffprobe and resolution-tier transcoding with ffmpeg.
"""
