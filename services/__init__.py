"""
ReelForge Services

Services for the short-video pipeline:
- video_generation: Kie / Poyo provider client
- domain: content items, reels, research and scripts
- jobs: persistent job queue, processor and scheduler
"""
