"""
Redecoration Pipeline

Per request, in order:
1. Fetch - download the room photo
2. Conformance - fit the generation API size limits
3. Masking (optional) - preserve walls, windows, ceiling and floor
4. Generation - external image edit API, result stored
"""
