"""Clip Gate - publish gating for AI-generated security camera clips.

Runs a generated clip through seven ordered quality and policy gates:
1. Motion, subject blur, audio and content policy checks on the degraded clip
2. Crop safety, overlay verification and disclosure watermark checks
3. Bounded self-correction (synthetic shake, audio beds, overlay reapply)
"""

__version__ = "0.1.0"
