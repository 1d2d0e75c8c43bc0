"""
AI content generation
generation/

1. AI Client         : active provider lookup, prompt, provider call, JSON decode, mock fallback
2. Structure Filter  : name normalization + per-taxonomy rejection rules
"""
