"""
HIRA Lifecycle Engine
AI assistance for worksheet authoring.

Submodules:
    - gateway: LLM gateway (Gemini or deterministic local stub, retry)
    - suggestions: hazard/control suggestion requests and stale-response tracking
"""
